"""
Password Vault
==============

The vault facade: one object wiring storage, authentication and entry
encryption together.

Usage:
    vault = PasswordVault.open()
    if not vault.is_initialized():
        vault.create("Tr0ub4dor&3")

    session = vault.unlock("Tr0ub4dor&3")
    entry = vault.add_entry(session, "GitHub", "alice", "s3cr3t!")
    with vault.get_secret(session, entry.id) as secret:
        ...
    vault.lock()

Secret-bearing operations take the session explicitly. Cleartext metadata
(listing, search, delete) is available without one.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Callable, List, Optional

from passman.core.auth.authenticator import (
    VaultAuthenticator,
    VaultSession,
    VaultState,
)
from passman.core.config import PassmanConfig
from passman.core.entry_crypto import EntryCrypto, SecretInput
from passman.core.generator import PasswordGenerator
from passman.core.logging import configure_logging
from passman.core.memory.secret import SecretMaterial
from passman.db.models import PasswordEntry, VaultMetadata, utcnow
from passman.db.store import VaultStore

_UNSET = object()


class PasswordVault:
    """Facade over VaultStore, VaultAuthenticator and EntryCrypto."""

    def __init__(
        self,
        store: VaultStore,
        config: Optional[PassmanConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._config = config or PassmanConfig()
        self._store = store
        self._clock = clock
        self._auth = VaultAuthenticator(store, self._config.security, clock=clock)
        self._crypto = EntryCrypto(self._auth, store, clock=clock)
        self._generator = PasswordGenerator(self._config.generator)
        self._log = logging.getLogger("passman.vault")

    @classmethod
    def open(cls, config: Optional[PassmanConfig] = None) -> PasswordVault:
        """
        Open the vault described by the configuration.

        Loads PassmanConfig from file and environment when none is given,
        creates the data directories, installs the secure logger and
        opens (migrating if needed) the vault file.
        """
        config = config or PassmanConfig.load()
        config.ensure_directories()
        configure_logging(config)
        return cls(VaultStore(config.paths.database_path), config)

    @property
    def config(self) -> PassmanConfig:
        return self._config

    @property
    def store(self) -> VaultStore:
        return self._store

    @property
    def authenticator(self) -> VaultAuthenticator:
        return self._auth

    @property
    def state(self) -> VaultState:
        return self._auth.state

    def is_initialized(self) -> bool:
        return self._store.is_initialized()

    def create(self, master_password: SecretInput) -> VaultMetadata:
        """
        Create the vault with the configured Argon2id cost.

        Raises:
            VaultAlreadyExistsError: If the vault already exists
            DerivationError: If the password is empty
        """
        return self._auth.initialize_vault(master_password, self._config.kdf.to_cost_parameters())

    def unlock(self, master_password: SecretInput) -> VaultSession:
        return self._auth.unlock(master_password)

    def lock(self) -> None:
        self._auth.lock()

    def check_session(self, session: Optional[VaultSession] = None) -> VaultSession:
        return self._auth.check_session(session)

    def add_entry(
        self,
        session: VaultSession,
        title: str,
        username: str,
        secret: SecretInput,
        url: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> PasswordEntry:
        """Encrypt the secret and store a new entry."""
        if not title.strip():
            raise ValueError("Entry title cannot be empty")

        entry_id = PasswordEntry.new_id()
        sealed = self._crypto.encrypt_secret(session, entry_id, secret)
        now = self._clock()
        entry = PasswordEntry(
            id=entry_id,
            title=title,
            username=username,
            encrypted_secret=sealed.to_bytes(),
            url=url,
            notes=notes,
            created_at=now,
            updated_at=now,
        )
        self._store.add_entry(entry)
        self._log.info("Entry added")
        return entry

    def get_secret(self, session: VaultSession, entry_id: str) -> SecretMaterial:
        """
        Decrypt an entry's secret.

        Raises:
            EntryNotFoundError: If no entry has this id
            AuthenticationFailure: If the stored ciphertext is corrupt or does not authenticate
        """
        entry = self._store.get_entry(entry_id)
        return self._crypto.decrypt_secret(session, entry.id, entry.encrypted_secret)

    def update_entry(
        self,
        session: VaultSession,
        entry_id: str,
        *,
        title: Optional[str] = None,
        username: Optional[str] = None,
        url: object = _UNSET,
        notes: object = _UNSET,
        secret: Optional[SecretInput] = None,
    ) -> PasswordEntry:
        """
        Change an entry. Only the given fields are updated.

        url and notes accept None to clear them. A new secret is encrypted
        with a fresh nonce.
        """
        self._auth.check_session(session)
        entry = self._store.get_entry(entry_id)

        if title is not None:
            if not title.strip():
                raise ValueError("Entry title cannot be empty")
            entry.title = title
        if username is not None:
            entry.username = username
        if url is not _UNSET:
            entry.url = url
        if notes is not _UNSET:
            entry.notes = notes
        if secret is not None:
            sealed = self._crypto.encrypt_secret(session, entry.id, secret)
            entry.encrypted_secret = sealed.to_bytes()

        entry.touch(self._clock())
        self._store.update_entry(entry)
        self._log.info("Entry updated")
        return entry

    def delete_entry(self, entry_id: str) -> None:
        self._store.delete_entry(entry_id)
        self._log.info("Entry deleted")

    def get_entry(self, entry_id: str) -> PasswordEntry:
        return self._store.get_entry(entry_id)

    def list_entries(self) -> List[PasswordEntry]:
        return self._store.list_entries()

    def search(self, query: str) -> List[PasswordEntry]:
        """Full-text prefix search over title, username, url and notes."""
        return self._store.search_entries(query)

    def find_by_title(self, title: str) -> PasswordEntry:
        return self._store.get_entry_by_title(title)

    def generate_password(self, length: Optional[int] = None) -> SecretMaterial:
        """
        Generate an entry password with the configured character classes.

        Needs no session; the result can be passed straight to add_entry()
        or update_entry(secret=...).

        Raises:
            PasswordGenerationError: If length or the configuration cannot
                produce a password
        """
        return self._generator.generate(length)

    def change_master_password(
        self,
        session: VaultSession,
        current_password: SecretInput,
        new_password: SecretInput,
    ) -> VaultSession:
        """
        Re-key the vault under a new master password.

        Every entry secret is re-encrypted and the verifier replaced in a
        single transaction.

        Returns:
            The replacement session; the one passed in is ended

        Raises:
            InvalidPasswordError: If current_password is wrong (counts as a failed attempt)
            LockedOutError: While a lockout is in force
        """
        return self._auth.change_master_password(
            session,
            current_password,
            new_password,
            reseal=lambda old_key, new_key: self._crypto.reseal(
                self._store.list_entries(), old_key, new_key
            ),
        )
