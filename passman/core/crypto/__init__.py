"""
passman Cryptographic Core
==========================

    1. Argon2id + HKDF-SHA256: master password -> encryption key, verifier
    2. ChaCha20-Poly1305: per-entry secret encryption

Security Properties:
    - All encryption is authenticated (AEAD)
    - Keys never touch disk
    - Constant-time verifier comparison
    - Secure RNG for all salts and nonces
"""

from passman.core.crypto.cipher import AuthenticationFailure, CipherEngine, Ciphertext
from passman.core.crypto.kdf import (
    CostParameters,
    DerivationError,
    DerivedKeys,
    SecurityWarning,
    derive,
    generate_salt,
)

__all__ = [
    "AuthenticationFailure",
    "CipherEngine",
    "Ciphertext",
    "CostParameters",
    "DerivationError",
    "DerivedKeys",
    "SecurityWarning",
    "derive",
    "generate_salt",
]
