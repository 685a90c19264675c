"""
Vault Records
=============

Rows persisted by the vault store.

Cleartext / encrypted boundary:
    - title, username, url, notes: cleartext, indexed and full-text searchable
    - encrypted_secret: opaque nonce || tag || data blob, parsed only when
      the secret is opened, never searchable
    - salt, verifier: cleartext by construction (neither reveals the key)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from passman.core.crypto.kdf import CostParameters

SCHEMA_VERSION = 1


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VaultMetadata:
    """
    The single metadata record of a vault.

    Note: salt and verifier are never exposed in repr.
    """

    salt: bytes
    verifier: bytes
    cost: CostParameters
    created_at: datetime = field(default_factory=utcnow)
    last_access: datetime = field(default_factory=utcnow)
    schema_version: int = SCHEMA_VERSION
    failed_attempts: int = 0
    locked_until: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"VaultMetadata(created_at={self.created_at.isoformat()}, "
            f"schema_version={self.schema_version}, cost={self.cost}, "
            f"failed_attempts={self.failed_attempts})"
        )


@dataclass
class PasswordEntry:
    """
    A stored credential. Only the secret is encrypted.

    encrypted_secret holds the stored bytes as is; a corrupt blob only
    surfaces when that entry's secret is decrypted.
    """

    id: str
    title: str
    username: str
    encrypted_secret: bytes
    url: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @staticmethod
    def new_id() -> str:
        """Generate a stable opaque entry identifier."""
        return str(uuid.uuid4())

    def touch(self, when: Optional[datetime] = None) -> None:
        """Update the modification timestamp."""
        self.updated_at = when or utcnow()
