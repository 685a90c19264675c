"""
Secret Material
===============

Scoped holder for sensitive bytes: derived keys, master passwords and
decrypted entry secrets.

Security Properties:
- Explicit zeroization on release (context exit, wipe(), or GC)
- Memory locking where supported (prevents swapping)
- No implicit copies (copy/deepcopy/pickle are refused)
- Opaque when formatted for logs or diagnostics

Limitations:
- Python may keep copies of immutable bytes handed in or out
- Best-effort security, not guaranteed
"""

from __future__ import annotations

import ctypes
import hmac
import platform
import secrets
from contextlib import contextmanager
from typing import Final, Iterator


IS_WINDOWS: Final[bool] = platform.system() == "Windows"
IS_LINUX: Final[bool] = platform.system() == "Linux"
IS_MACOS: Final[bool] = platform.system() == "Darwin"


def _libc() -> ctypes.CDLL:
    return ctypes.CDLL("libc.so.6" if IS_LINUX else "libc.dylib", use_errno=True)


def _mlock(address: int, size: int) -> bool:
    """
    Lock memory pages to prevent swapping.

    Returns True if successful, False otherwise.
    """
    try:
        if IS_WINDOWS:
            kernel32 = ctypes.windll.kernel32
            return bool(kernel32.VirtualLock(ctypes.c_void_p(address), ctypes.c_size_t(size)))
        elif IS_LINUX or IS_MACOS:
            return _libc().mlock(ctypes.c_void_p(address), ctypes.c_size_t(size)) == 0
    except (OSError, AttributeError):
        pass
    return False


def _munlock(address: int, size: int) -> bool:
    """Unlock memory pages."""
    try:
        if IS_WINDOWS:
            kernel32 = ctypes.windll.kernel32
            return bool(kernel32.VirtualUnlock(ctypes.c_void_p(address), ctypes.c_size_t(size)))
        elif IS_LINUX or IS_MACOS:
            return _libc().munlock(ctypes.c_void_p(address), ctypes.c_size_t(size)) == 0
    except (OSError, AttributeError):
        pass
    return False


def _address_of(buffer: bytearray) -> int:
    return ctypes.addressof((ctypes.c_char * len(buffer)).from_buffer(buffer))


def secure_zero(data: bytearray) -> None:
    """
    Overwrite a mutable byte buffer with zeros in place.

    Uses ctypes memset for direct memory access, with a Python-level
    fallback when the buffer cannot be addressed (e.g. exported views).

    Security Notes:
        - Buffer must be mutable (bytearray, not bytes)
        - Python may still hold copies made earlier
    """
    if len(data) == 0:
        return
    try:
        ctypes.memset(_address_of(data), 0, len(data))
    except (TypeError, ValueError, BufferError):
        for i in range(len(data)):
            data[i] = 0


class SecretMaterial:
    """
    Sensitive byte buffer that is zeroed when released.

    The contents are only reachable through expose(), which hands out a
    read-only view for the duration of a with-block. Copies are refused;
    duplicate() is the one sanctioned way to obtain a second, independent
    holder, which wipes itself on its own release.

    Usage:
        with SecretMaterial.from_text(master_password) as pw:
            with pw.expose() as view:
                derive(view)
        # pw is now zeroed

    Security Notes:
        - Prefer with-blocks; __del__ is only the last line of defence
        - Do not keep the exposed view after the with-block
    """

    __slots__ = ("_buffer", "_length", "_locked", "_wiped", "__weakref__")

    def __init__(self, data: bytes | bytearray | memoryview = b"", lock_memory: bool = True) -> None:
        """
        Copy data into a private buffer.

        When data is a bytearray the caller's buffer is zeroed after the copy,
        so ownership moves into this holder.
        """
        self._length = len(data)
        # Keep at least one byte so the buffer always has an address.
        self._buffer = bytearray(max(self._length, 1))
        self._buffer[: self._length] = data
        self._wiped = False
        self._locked = False

        if isinstance(data, bytearray):
            secure_zero(data)

        if lock_memory:
            try:
                self._locked = _mlock(_address_of(self._buffer), len(self._buffer))
            except (TypeError, ValueError):
                self._locked = False

    @classmethod
    def from_text(cls, text: str) -> "SecretMaterial":
        """Create from a str, encoded as UTF-8."""
        return cls(bytearray(text.encode("utf-8")))

    @classmethod
    def random(cls, size: int) -> "SecretMaterial":
        """Create holding size bytes from the OS CSPRNG."""
        return cls(bytearray(secrets.token_bytes(size)))

    @property
    def is_wiped(self) -> bool:
        return self._wiped

    @property
    def is_locked(self) -> bool:
        """Whether the backing pages are locked in RAM."""
        return self._locked

    def _ensure_live(self) -> None:
        if self._wiped:
            raise ValueError("Secret material has been wiped")

    @contextmanager
    def expose(self) -> Iterator[memoryview]:
        """
        Yield a read-only view of the secret for the duration of the block.

        The view is released on exit, whether the block returns or raises.
        """
        self._ensure_live()
        base = memoryview(self._buffer)
        view = base[: self._length].toreadonly()
        try:
            yield view
        finally:
            view.release()
            base.release()

    def duplicate(self) -> "SecretMaterial":
        """
        Intentionally copy the secret into a new, independent holder.

        The duplicate is wiped by its own context exit, wipe() or GC.
        """
        with self.expose() as view:
            return SecretMaterial(view, lock_memory=self._locked)

    def equals(self, other: "SecretMaterial | bytes") -> bool:
        """Constant-time comparison against another secret or bytes."""
        with self.expose() as mine:
            if isinstance(other, SecretMaterial):
                with other.expose() as theirs:
                    return hmac.compare_digest(mine, theirs)
            return hmac.compare_digest(mine, other)

    def wipe(self) -> None:
        """Zero the buffer and unlock its pages. Idempotent."""
        if self._wiped:
            return
        secure_zero(self._buffer)
        if self._locked:
            try:
                _munlock(_address_of(self._buffer), len(self._buffer))
            except (TypeError, ValueError):
                pass
            self._locked = False
        self._wiped = True

    def __enter__(self) -> "SecretMaterial":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Always wipe, on success and on error."""
        self.wipe()

    def __del__(self) -> None:
        try:
            self.wipe()
        except Exception:
            pass

    def __len__(self) -> int:
        return self._length

    def __copy__(self):
        raise TypeError("SecretMaterial cannot be copied; use duplicate()")

    def __deepcopy__(self, memo):
        raise TypeError("SecretMaterial cannot be copied; use duplicate()")

    def __reduce__(self):
        raise TypeError("SecretMaterial cannot be pickled")

    def __repr__(self) -> str:
        """Safe representation - never shows the value."""
        if self._wiped:
            return "SecretMaterial(WIPED)"
        return f"SecretMaterial(len={self._length})"

    def __str__(self) -> str:
        return "********"

    def __format__(self, format_spec: str) -> str:
        return str(self)
