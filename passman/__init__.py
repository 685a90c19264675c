"""
passman - An Offline Credential Vault
=====================================

Stores credentials in a local SQLite file. Only the secret of each entry
is encrypted (ChaCha20-Poly1305 under an Argon2id-derived key); titles,
usernames, URLs and notes stay searchable in cleartext.

Security Notice:
- No secrets are logged
- Keys live only in wipeable buffers while the vault is unlocked
- Fail-closed: a ciphertext that does not authenticate is never decrypted
"""

from passman.core.config import PassmanConfig
from passman.core.logging import get_secure_logger

__version__ = "0.1.0"

__all__ = ["PassmanConfig", "get_secure_logger", "__version__"]
