"""
Vault Authenticator
===================

Master-password authentication with attempt limits, timed lockout and a
single in-memory session.

States:
    LOCKED ──unlock()──▶ AUTHENTICATING ──match──▶ UNLOCKED
       ▲                       │                      │
       │                  mismatch                lock() / expiry
       │                       ▼                      │
       └──── lockout ◀── LOCKED_OUT (timed) ◀─ threshold reached
             elapsed

Security Properties:
- Lockout is checked before any derivation (no timing oracle)
- Verifier comparison is constant-time
- Failed-attempt counter and lockout deadline are persisted in the
  vault metadata, so a restart does not reset them
- The session key lives only in SecretMaterial and is wiped on lock,
  expiry, replacement and GC

Note: attempt limits only bound guessing through this interface. A stolen
vault file is protected solely by the Argon2id cost parameters.
"""

from __future__ import annotations

import hmac
import logging
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, auto
from typing import Callable, Dict, Iterator, Optional

from passman.core.config import SecurityConfig
from passman.core.crypto.cipher import Ciphertext
from passman.core.crypto.kdf import CostParameters, DerivedKeys, derive, generate_salt
from passman.core.memory.secret import SecretMaterial
from passman.db.models import VaultMetadata, utcnow
from passman.db.store import VaultStore

Clock = Callable[[], datetime]
Resealer = Callable[[SecretMaterial, SecretMaterial], Dict[str, Ciphertext]]


class VaultState(Enum):
    """Authenticator states."""
    LOCKED = auto()
    AUTHENTICATING = auto()
    UNLOCKED = auto()
    LOCKED_OUT = auto()


class AuthError(Exception):
    """Base exception for user-facing, recoverable authentication errors."""
    pass


class InvalidPasswordError(AuthError):
    """Raised when the master password is wrong."""

    def __init__(self) -> None:
        super().__init__("Invalid master password")


class LockedOutError(AuthError):
    """Raised while the vault refuses unlock attempts."""

    def __init__(self, remaining: timedelta) -> None:
        self.remaining = remaining
        seconds = max(1, int(remaining.total_seconds() + 0.999))
        super().__init__(f"Vault is locked out. Try again in {seconds} seconds.")


class SessionExpiredError(AuthError):
    """Raised when the session timed out; unlock again."""

    def __init__(self) -> None:
        super().__init__("Session has expired. Unlock the vault again.")


class SessionRequiredError(Exception):
    """Raised when a secret operation is attempted without an unlocked session."""

    def __init__(self) -> None:
        super().__init__("Vault is locked. Unlock it first.")


@dataclass
class LockoutState:
    """Failed attempts since the last success and the lockout deadline, if tripped."""

    failed_attempts: int = 0
    locked_until: Optional[datetime] = None

    def is_locked_out(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def remaining(self, now: datetime) -> timedelta:
        if self.locked_until is None:
            return timedelta(0)
        return max(self.locked_until - now, timedelta(0))


class VaultSession:
    """
    An unlocked session.

    Passed explicitly into every operation that needs the key. The key
    itself is never handed out; operations get a short-lived snapshot
    through VaultAuthenticator.session_key().
    """

    __slots__ = ("id", "created_at", "expires_at", "_key", "_expired")

    def __init__(
        self,
        key: SecretMaterial,
        created_at: datetime,
        expires_at: Optional[datetime],
    ) -> None:
        self.id = uuid.uuid4().hex
        self.created_at = created_at
        self.expires_at = expires_at
        self._key = key
        self._expired = False

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now > self.expires_at

    @property
    def is_active(self) -> bool:
        return not self._key.is_wiped

    def _close(self, expired: bool = False) -> None:
        self._expired = self._expired or expired
        self._key.wipe()

    def __repr__(self) -> str:
        """Safe representation without key material."""
        expires = self.expires_at.isoformat() if self.expires_at else "never"
        return f"VaultSession(id={self.id!r}, active={self.is_active}, expires_at={expires})"


class VaultAuthenticator:
    """
    Single-session authenticator for one vault.

    Usage:
        auth = VaultAuthenticator(store, config.security)

        session = auth.unlock("master password")
        with auth.session_key(session) as key:
            ...                      # key snapshot, wiped on exit
        auth.lock()

    Thread Safety:
        unlock(), lock(), check_session() and session_key() share one
        re-entrant lock, so concurrent unlocks are serialized and cannot
        race past the lockout check.
    """

    def __init__(
        self,
        store: VaultStore,
        security: Optional[SecurityConfig] = None,
        clock: Clock = utcnow,
    ) -> None:
        self._store = store
        self._security = security or SecurityConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._session: Optional[VaultSession] = None
        self._lockout = LockoutState()
        self._state = VaultState.LOCKED
        self._log = logging.getLogger("passman.auth")

        if store.is_initialized():
            metadata = store.get_metadata()
            self._lockout = LockoutState(metadata.failed_attempts, metadata.locked_until)
            if self._lockout.is_locked_out(self._clock()):
                self._state = VaultState.LOCKED_OUT

    @property
    def state(self) -> VaultState:
        with self._lock:
            if self._state is VaultState.LOCKED_OUT and not self._lockout.is_locked_out(self._clock()):
                self._state = VaultState.LOCKED
            return self._state

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def lockout_state(self) -> LockoutState:
        with self._lock:
            return LockoutState(self._lockout.failed_attempts, self._lockout.locked_until)

    @property
    def failed_attempts(self) -> int:
        return self._lockout.failed_attempts

    def initialize_vault(
        self,
        master_password: str | bytes | SecretMaterial,
        cost: CostParameters,
    ) -> VaultMetadata:
        """
        Create the vault's metadata record.

        Generates the salt, derives the verifier and persists both with the
        cost parameters. The derived key is wiped; call unlock() afterwards.

        Raises:
            DerivationError: If the password is empty or cost is invalid
            VaultAlreadyExistsError: If the vault already exists
        """
        salt = generate_salt()
        derived = derive(master_password, salt, cost)
        derived.key.wipe()

        metadata = VaultMetadata(salt=salt, verifier=derived.verifier, cost=cost)
        self._store.create_metadata(metadata)
        self._log.info(
            "Vault created (argon2id m=%d t=%d p=%d)",
            cost.memory_cost, cost.time_cost, cost.parallelism,
        )
        return metadata

    def unlock(self, master_password: str | bytes | SecretMaterial) -> VaultSession:
        """
        Authenticate and start a session.

        Args:
            master_password: The master password

        Returns:
            The new VaultSession. A previous session is ended only when the
            password matches, so a failed attempt leaves it usable.

        Raises:
            LockedOutError: While a lockout is in force (no derivation done)
            InvalidPasswordError: If the password does not match
            DerivationError: If the password is empty
            VaultNotInitializedError: If the vault does not exist
        """
        with self._lock:
            now = self._clock()
            metadata = self._load_metadata()
            self._raise_if_locked_out(now)

            self._state = VaultState.AUTHENTICATING
            derived: Optional[DerivedKeys] = None
            try:
                derived = derive(master_password, metadata.salt, metadata.cost)

                if not hmac.compare_digest(derived.verifier, metadata.verifier):
                    derived.key.wipe()
                    self._record_failure(now)
                    raise InvalidPasswordError()

                self._end_session()
                session = self._start_session(derived.key, now)
            except BaseException:
                if derived is not None:
                    derived.key.wipe()
                if self._state is VaultState.AUTHENTICATING:
                    self._state = self._settled_state()
                raise

            self._log.info("Vault unlocked")
            return session

    def check_session(self, session: Optional[VaultSession] = None) -> VaultSession:
        """
        Return the current session if it is still valid.

        Args:
            session: The session the caller holds; None means "the current one"

        Raises:
            SessionRequiredError: If there is no session or it was replaced/locked
            SessionExpiredError: If the session timed out (its key is wiped)
        """
        with self._lock:
            current = self._session
            if current is None or (session is not None and session is not current):
                if session is not None and session._expired:
                    raise SessionExpiredError()
                raise SessionRequiredError()

            if current.is_expired(self._clock()):
                current._close(expired=True)
                self._session = None
                self._state = VaultState.LOCKED
                self._log.info("Session expired; vault locked")
                raise SessionExpiredError()

            return current

    @contextmanager
    def session_key(self, session: Optional[VaultSession] = None) -> Iterator[SecretMaterial]:
        """
        Yield a snapshot of the session key, wiped when the block exits.

        Fetch the key, use it, release it; never cache it across I/O.
        """
        with self._lock:
            current = self.check_session(session)
            snapshot = current._key.duplicate()
        with snapshot:
            yield snapshot

    def lock(self) -> None:
        """End the session and wipe its key. Idempotent."""
        with self._lock:
            had_session = self._session is not None
            self._end_session()
            if self._state is not VaultState.LOCKED_OUT:
                self._state = VaultState.LOCKED
            if had_session:
                self._log.info("Vault locked")

    def change_master_password(
        self,
        session: VaultSession,
        current_password: str | bytes | SecretMaterial,
        new_password: str | bytes | SecretMaterial,
        reseal: Resealer,
    ) -> VaultSession:
        """
        Re-key the vault under a new master password.

        The current password is checked like an unlock attempt (it counts
        towards lockout). The salt and cost parameters stay the same.
        reseal(old_key, new_key) must return the re-encrypted secrets by
        entry id; they are stored together with the new verifier in one
        transaction.

        Returns:
            A new session under the new key (the old one is ended)
        """
        with self._lock:
            self.check_session(session)
            now = self._clock()
            metadata = self._load_metadata()
            self._raise_if_locked_out(now)

            current = derive(current_password, metadata.salt, metadata.cost)
            current.key.wipe()
            if not hmac.compare_digest(current.verifier, metadata.verifier):
                self._record_failure(now)
                raise InvalidPasswordError()
            self._reset_lockout()

            new = derive(new_password, metadata.salt, metadata.cost)
            try:
                with self.session_key(session) as old_key:
                    resealed = reseal(old_key, new.key)
                self._store.replace_secrets_and_verifier(resealed, new.verifier, now)
            except BaseException:
                new.key.wipe()
                raise

            self._end_session()
            session = self._start_session(new.key, now)
            self._log.info("Master password changed; %d secrets re-encrypted", len(resealed))
            return session

    def _load_metadata(self) -> VaultMetadata:
        metadata = self._store.get_metadata()
        self._lockout = LockoutState(metadata.failed_attempts, metadata.locked_until)
        return metadata

    def _raise_if_locked_out(self, now: datetime) -> None:
        if self._lockout.is_locked_out(now):
            self._state = VaultState.LOCKED_OUT
            self._log.warning("Unlock refused: vault is locked out")
            raise LockedOutError(self._lockout.remaining(now))

    def _record_failure(self, now: datetime) -> None:
        """Count a failed attempt and trip the lockout at the threshold."""
        attempts = self._lockout.failed_attempts + 1
        locked_until = None
        if attempts >= self._security.max_login_attempts:
            locked_until = now + timedelta(seconds=self._security.lockout_duration_seconds)

        self._store.save_lockout(attempts, locked_until)
        self._lockout = LockoutState(attempts, locked_until)

        if locked_until is not None:
            self._end_session()
            self._state = VaultState.LOCKED_OUT
            self._log.warning(
                "Failed unlock attempt %d; vault locked out for %d seconds",
                attempts, self._security.lockout_duration_seconds,
            )
        else:
            self._state = self._settled_state()
            self._log.warning("Failed unlock attempt %d", attempts)

    def _settled_state(self) -> VaultState:
        return VaultState.UNLOCKED if self._session is not None else VaultState.LOCKED

    def _reset_lockout(self) -> None:
        if self._lockout.failed_attempts or self._lockout.locked_until:
            self._store.save_lockout(0, None)
        self._lockout = LockoutState()

    def _start_session(self, key: SecretMaterial, now: datetime) -> VaultSession:
        self._reset_lockout()
        timeout = self._security.session_timeout_seconds
        expires_at = now + timedelta(seconds=timeout) if timeout else None
        self._session = VaultSession(key, created_at=now, expires_at=expires_at)
        self._state = VaultState.UNLOCKED
        self._store.touch_last_access(now)
        return self._session

    def _end_session(self) -> None:
        if self._session is not None:
            self._session._close()
            self._session = None


__all__ = [
    "AuthError",
    "InvalidPasswordError",
    "LockedOutError",
    "LockoutState",
    "SessionExpiredError",
    "SessionRequiredError",
    "VaultAuthenticator",
    "VaultSession",
    "VaultState",
]
