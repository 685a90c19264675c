"""
Entry Crypto
============

Encrypts and decrypts individual entry secrets with the session key.

Each ciphertext is bound to its entry through the associated data (the
entry id), so swapping encrypted blobs between rows fails authentication
instead of yielding another entry's secret.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, Optional, Union

from passman.core.auth.authenticator import Clock, VaultAuthenticator, VaultSession
from passman.core.crypto.cipher import CipherEngine, Ciphertext
from passman.core.memory.secret import SecretMaterial
from passman.db.models import PasswordEntry
from passman.db.store import VaultStore

SecretInput = str | bytes | bytearray | SecretMaterial
SealedSecret = Union[Ciphertext, bytes]


def _associated_data(entry_id: str) -> bytes:
    return entry_id.encode("utf-8")


def _as_ciphertext(sealed: SealedSecret) -> Ciphertext:
    if isinstance(sealed, Ciphertext):
        return sealed
    return Ciphertext.from_bytes(sealed)


def _as_secret(plaintext: SecretInput) -> SecretMaterial:
    """Wrap plaintext in a SecretMaterial the caller does not own."""
    if isinstance(plaintext, SecretMaterial):
        return plaintext.duplicate()
    if isinstance(plaintext, str):
        return SecretMaterial.from_text(plaintext)
    return SecretMaterial(plaintext)


class EntryCrypto:
    """
    Per-entry secret encryption.

    Usage:
        crypto = EntryCrypto(authenticator, store)

        sealed = crypto.encrypt_secret(session, entry_id, "s3cr3t!")
        with crypto.decrypt_secret(session, entry_id, sealed) as secret:
            with secret.expose() as view:
                ...
    """

    def __init__(
        self,
        authenticator: VaultAuthenticator,
        store: VaultStore,
        engine: Optional[CipherEngine] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        """
        Args:
            authenticator: Source of the session key
            store: Receives last_access updates on decrypt
            engine: AEAD engine; ChaCha20-Poly1305 by default
            clock: Time source for last_access; defaults to the authenticator's
        """
        self._auth = authenticator
        self._store = store
        self._engine = engine or CipherEngine()
        self._clock = clock or authenticator.clock
        self._log = logging.getLogger("passman.crypto")

    def encrypt_secret(
        self,
        session: VaultSession,
        entry_id: str,
        plaintext: SecretInput,
    ) -> Ciphertext:
        """
        Seal a secret for the given entry.

        A bytearray argument is zeroed; a SecretMaterial argument is left
        untouched.

        Raises:
            SessionRequiredError: If the vault is not unlocked
            SessionExpiredError: If the session timed out
        """
        with _as_secret(plaintext) as secret:
            with self._auth.session_key(session) as key, secret.expose() as view:
                return self._engine.seal(key, bytes(view), _associated_data(entry_id))

    def decrypt_secret(
        self,
        session: VaultSession,
        entry_id: str,
        ciphertext: SealedSecret,
    ) -> SecretMaterial:
        """
        Open an entry's secret.

        ciphertext may be a Ciphertext or the stored nonce || tag || data
        blob; the blob is parsed here, so a truncated one fails like any
        other unauthentic ciphertext.

        Returns:
            The plaintext in a SecretMaterial owned by the caller

        Raises:
            AuthenticationFailure: Wrong key, tampered, truncated or misbound ciphertext
            SessionRequiredError: If the vault is not unlocked
            SessionExpiredError: If the session timed out
        """
        with self._auth.session_key(session) as key:
            sealed = _as_ciphertext(ciphertext)
            plaintext = bytearray(self._engine.open(key, sealed, _associated_data(entry_id)))

        secret = SecretMaterial(plaintext)
        self._store.touch_last_access(self._clock())
        return secret

    def reseal(
        self,
        entries: Iterable[PasswordEntry],
        old_key: SecretMaterial,
        new_key: SecretMaterial,
    ) -> Dict[str, Ciphertext]:
        """
        Re-encrypt entry secrets from old_key to new_key.

        Nothing is written; the caller stores the result atomically.

        Raises:
            AuthenticationFailure: If any entry does not open under old_key
        """
        resealed: Dict[str, Ciphertext] = {}
        for entry in entries:
            aad = _associated_data(entry.id)
            opened = self._engine.open(old_key, _as_ciphertext(entry.encrypted_secret), aad)
            with SecretMaterial(bytearray(opened)) as secret:
                with secret.expose() as view:
                    resealed[entry.id] = self._engine.seal(new_key, bytes(view), aad)
        self._log.debug("Re-encrypted %d entry secrets", len(resealed))
        return resealed
