"""
Database module - SQLite persistence for vault metadata and entries.

Security Considerations:
- Entry secrets are stored only as authenticated ciphertext
- The vault file is created owner-only
"""

from passman.db.models import PasswordEntry, VaultMetadata
from passman.db.store import (
    EntryNotFoundError,
    StoreError,
    VaultAlreadyExistsError,
    VaultNotInitializedError,
    VaultStore,
)

__all__ = [
    "EntryNotFoundError",
    "PasswordEntry",
    "StoreError",
    "VaultAlreadyExistsError",
    "VaultMetadata",
    "VaultNotInitializedError",
    "VaultStore",
]
