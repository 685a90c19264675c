"""
passman Authentication Module
=============================

Master-password unlock with:
- Constant-time verifier check
- Persisted failed-attempt counter and timed lockout
- One in-memory session with optional expiry
"""

from passman.core.auth.authenticator import (
    AuthError,
    InvalidPasswordError,
    LockedOutError,
    LockoutState,
    SessionExpiredError,
    SessionRequiredError,
    VaultAuthenticator,
    VaultSession,
    VaultState,
)

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
