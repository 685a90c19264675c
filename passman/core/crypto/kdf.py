"""
Key Derivation
==============

Turns the master password into the vault's encryption key and its
password verifier.

Implements:
    - Argon2id for memory-hard password stretching
    - HKDF-SHA256 to split the stretched secret into two independent outputs

Derivation Flow:
    master_password + salt
        ↓ Argon2id (memory_cost, time_cost, parallelism)
    master_secret (32 bytes, wiped immediately)
        ↓ HKDF info="passman/v1/encryption-key"   ↓ HKDF info="passman/v1/verifier"
    session key (SecretMaterial)                  verifier (stored in vault metadata)

The verifier is only used to check the password; knowing it reveals
nothing about the encryption key.
"""

from __future__ import annotations

import secrets
import warnings
from dataclasses import dataclass
from typing import Final

from argon2.exceptions import HashingError
from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from passman.core.memory.secret import SecretMaterial

# Argon2id parameters (OWASP recommended)
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536  # 64 MiB
ARGON2_PARALLELISM: Final[int] = 4

# Below these the vault still works but offline guessing gets cheap.
RECOMMENDED_MIN_MEMORY_COST: Final[int] = 19456  # 19 MiB
RECOMMENDED_MIN_TIME_COST: Final[int] = 2

KEY_LENGTH: Final[int] = 32
VERIFIER_LENGTH: Final[int] = 32
SALT_LENGTH: Final[int] = 32
MIN_SALT_LENGTH: Final[int] = 16

_KEY_INFO: Final[bytes] = b"passman/v1/encryption-key"
_VERIFIER_INFO: Final[bytes] = b"passman/v1/verifier"


class DerivationError(ValueError):
    """Raised for an empty password, a short salt or invalid cost parameters."""
    pass


class SecurityWarning(UserWarning):
    """Warning for security-related issues."""
    pass


@dataclass(frozen=True, slots=True)
class CostParameters:
    """
    Argon2id cost parameters, fixed per vault at creation.

    Attributes:
        memory_cost: Memory usage in KiB
        time_cost: Number of iterations
        parallelism: Number of lanes
    """

    memory_cost: int = ARGON2_MEMORY_COST
    time_cost: int = ARGON2_TIME_COST
    parallelism: int = ARGON2_PARALLELISM

    def validate(self) -> None:
        """
        Check the parameters are usable by Argon2id.

        Raises:
            DerivationError: If any parameter is out of range
        """
        if self.time_cost < 1:
            raise DerivationError("time_cost must be at least 1")
        if not 1 <= self.parallelism <= 255:
            raise DerivationError("parallelism must be between 1 and 255")
        if self.memory_cost < 8 * self.parallelism:
            raise DerivationError("memory_cost must be at least 8 KiB per lane")

        if (
            self.memory_cost < RECOMMENDED_MIN_MEMORY_COST
            or self.time_cost < RECOMMENDED_MIN_TIME_COST
        ):
            warnings.warn(
                "Argon2id cost parameters are below the recommended minimum; "
                "a stolen vault file will be cheap to brute-force.",
                SecurityWarning,
                stacklevel=3,
            )


@dataclass(frozen=True, slots=True)
class DerivedKeys:
    """
    Output of one derivation.

    Attributes:
        key: 32-byte encryption key (caller must wipe)
        verifier: 32-byte password verifier, safe to persist
    """

    key: SecretMaterial
    verifier: bytes

    def __repr__(self) -> str:
        """Safe representation without key material."""
        return f"DerivedKeys(key={self.key!r}, verifier_len={len(self.verifier)})"


def generate_salt() -> bytes:
    """Generate a random vault salt."""
    return secrets.token_bytes(SALT_LENGTH)


def _expand(master_secret: bytes | bytearray, info: bytes, length: int) -> bytes:
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=None,
        info=info,
    )
    return hkdf.derive(bytes(master_secret))


def derive(
    master_password: bytes | str | SecretMaterial,
    salt: bytes,
    params: CostParameters,
) -> DerivedKeys:
    """
    Derive the encryption key and verifier from a master password.

    Deterministic: identical password, salt and parameters always give the
    same key and verifier. Deliberately slow.

    Args:
        master_password: The master password
        salt: The vault's persisted salt (at least 16 bytes)
        params: The vault's persisted cost parameters

    Returns:
        DerivedKeys with the key wrapped in SecretMaterial

    Raises:
        DerivationError: On empty password, short salt, bad parameters
    """
    params.validate()
    if len(salt) < MIN_SALT_LENGTH:
        raise DerivationError(f"Salt must be at least {MIN_SALT_LENGTH} bytes")

    if isinstance(master_password, SecretMaterial):
        password = master_password.duplicate()
    elif isinstance(master_password, str):
        password = SecretMaterial.from_text(master_password)
    else:
        password = SecretMaterial(master_password)

    with password:
        if len(password) == 0:
            raise DerivationError("Master password cannot be empty")

        with password.expose() as secret:
            try:
                master_secret = bytearray(
                    hash_secret_raw(
                        secret=bytes(secret),
                        salt=salt,
                        time_cost=params.time_cost,
                        memory_cost=params.memory_cost,
                        parallelism=params.parallelism,
                        hash_len=KEY_LENGTH,
                        type=Type.ID,
                    )
                )
            except HashingError as e:
                raise DerivationError(f"Key derivation failed: {e}") from e

    with SecretMaterial(master_secret) as master:
        with master.expose() as view:
            key = SecretMaterial(bytearray(_expand(view, _KEY_INFO, KEY_LENGTH)))
            verifier = _expand(view, _VERIFIER_INFO, VERIFIER_LENGTH)

    return DerivedKeys(key=key, verifier=verifier)
