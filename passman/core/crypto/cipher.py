"""
Cipher Engine
=============

ChaCha20-Poly1305 authenticated encryption for entry secrets.

Security Properties:
    - 256-bit key
    - 96-bit random nonce, fresh on every seal
    - 128-bit Poly1305 authentication tag
    - Associated data binds a ciphertext to its owning entry
    - IETF RFC 8439 compliant

Stored Layout:
    nonce (12) || tag (16) || ciphertext (len(plaintext))

WARNING:
    - Never reuse (key, nonce) pairs
    - A failed open() never yields plaintext, partial or otherwise
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import Final

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import ChaCha20Poly1305

from passman.core.memory.secret import SecretMaterial

# Constants per RFC 8439
KEY_SIZE: Final[int] = 32  # 256 bits
NONCE_SIZE: Final[int] = 12  # 96 bits (IETF variant)
TAG_SIZE: Final[int] = 16  # 128 bits Poly1305
HEADER_SIZE: Final[int] = NONCE_SIZE + TAG_SIZE


class AuthenticationFailure(Exception):
    """
    Raised when a ciphertext does not authenticate.

    Covers tampering, a wrong key, mismatched associated data and corrupted
    storage alike. Never retried.
    """

    def __init__(self, message: str = "Cannot decrypt: authentication failed") -> None:
        super().__init__(message)


@dataclass(frozen=True, slots=True)
class Ciphertext:
    """
    Immutable sealed payload.

    Attributes:
        nonce: Unique nonce used for this seal
        tag: Poly1305 authentication tag
        data: Encrypted bytes (same length as the plaintext)
    """

    nonce: bytes
    tag: bytes
    data: bytes

    def to_bytes(self) -> bytes:
        """Serialize as nonce || tag || data for opaque storage."""
        return self.nonce + self.tag + self.data

    @classmethod
    def from_bytes(cls, blob: bytes) -> "Ciphertext":
        """
        Parse a stored blob.

        Raises:
            AuthenticationFailure: If the blob is too short to hold a nonce and tag
        """
        blob = bytes(blob)
        if len(blob) < HEADER_SIZE:
            raise AuthenticationFailure("Cannot decrypt: stored ciphertext is truncated")
        return cls(
            nonce=blob[:NONCE_SIZE],
            tag=blob[NONCE_SIZE:HEADER_SIZE],
            data=blob[HEADER_SIZE:],
        )

    def __repr__(self) -> str:
        return f"Ciphertext(data_len={len(self.data)})"


class CipherEngine:
    """
    ChaCha20-Poly1305 AEAD cipher (RFC 8439) keyed by SecretMaterial.

    Usage:
        engine = CipherEngine()

        sealed = engine.seal(key, b"s3cr3t!", associated_data=entry_id.encode())
        plaintext = engine.open(key, sealed, associated_data=entry_id.encode())

    Security Notes:
        - The key is only exposed for the duration of each call
        - Nonces come from the OS CSPRNG, never from a counter
    """

    __slots__ = ()

    @staticmethod
    def generate_nonce() -> bytes:
        """
        Generate a cryptographically secure random nonce.

        Security:
            96-bit random nonces safe for ~2^32 messages per key
        """
        return secrets.token_bytes(NONCE_SIZE)

    @staticmethod
    def _check_key(key: SecretMaterial) -> None:
        if len(key) != KEY_SIZE:
            raise ValueError(f"Key must be exactly {KEY_SIZE} bytes")

    def seal(
        self,
        key: SecretMaterial,
        plaintext: bytes,
        associated_data: bytes,
    ) -> Ciphertext:
        """
        Encrypt and authenticate plaintext.

        Args:
            key: 32-byte key
            plaintext: Data to encrypt (may be empty)
            associated_data: Context authenticated but not encrypted

        Returns:
            Ciphertext with a fresh nonce

        Raises:
            ValueError: If key is wrong size
        """
        self._check_key(key)
        nonce = self.generate_nonce()

        with key.expose() as raw_key:
            sealed = ChaCha20Poly1305(bytes(raw_key)).encrypt(nonce, plaintext, associated_data)

        # cryptography appends the tag; the stored layout puts it first.
        return Ciphertext(nonce=nonce, tag=sealed[-TAG_SIZE:], data=sealed[:-TAG_SIZE])

    def open(
        self,
        key: SecretMaterial,
        ciphertext: Ciphertext,
        associated_data: bytes,
    ) -> bytes:
        """
        Verify and decrypt a ciphertext.

        Args:
            key: 32-byte key
            ciphertext: Sealed payload
            associated_data: Must equal the value given to seal()

        Returns:
            Decrypted plaintext bytes

        Raises:
            ValueError: If key is wrong size
            AuthenticationFailure: If the tag does not verify
        """
        self._check_key(key)
        if len(ciphertext.nonce) != NONCE_SIZE or len(ciphertext.tag) != TAG_SIZE:
            raise AuthenticationFailure("Cannot decrypt: malformed ciphertext")

        with key.expose() as raw_key:
            cipher = ChaCha20Poly1305(bytes(raw_key))
            try:
                return cipher.decrypt(
                    ciphertext.nonce,
                    ciphertext.data + ciphertext.tag,
                    associated_data,
                )
            except InvalidTag:
                raise AuthenticationFailure() from None
