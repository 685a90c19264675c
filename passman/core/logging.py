"""
Secure Logging Module
=====================

Security-aware logging with secret filtering.

Security Features:
- Automatic redaction of password/secret/key/salt/verifier assignments
- Raw bytes arguments are never rendered
- Rotating log files in an owner-only directory
- Structured (JSON) output support

Nothing in passman logs keys, passwords or plaintext on purpose; the filter
catches accidents.
"""

from __future__ import annotations

import json
import logging
import os
import re
import stat
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Final, Optional, Pattern

if TYPE_CHECKING:
    from passman.core.config import PassmanConfig

_ASSIGNMENT: Final[str] = r'\s*[=:]\s*["\']?[^\s"\',;]+["\']?'

# Patterns for sensitive data detection
_SENSITIVE_PATTERNS: Final[list[tuple[str, Pattern[str]]]] = [
    ("password", re.compile(r'(?i)\b(?:master[_-]?)?(?:password|passwd|pwd|passphrase)' + _ASSIGNMENT)),
    ("key", re.compile(r'(?i)\b(?:\w+[_-])?key' + _ASSIGNMENT)),
    ("token", re.compile(r'(?i)\b(?:token|bearer)' + _ASSIGNMENT)),
    ("secret", re.compile(r'(?i)\b(?:\w+[_-])?secret' + _ASSIGNMENT)),
    ("salt", re.compile(r'(?i)\bsalt' + _ASSIGNMENT)),
    ("verifier", re.compile(r'(?i)\bverifier' + _ASSIGNMENT)),
    # Base64 runs (40+ chars)
    ("base64_secret", re.compile(r'[A-Za-z0-9+/]{40,}={0,2}')),
    # Hex runs (32+ chars)
    ("hex_secret", re.compile(r'(?i)(?:0x)?[a-f0-9]{32,}')),
]

_REDACTED_TEXT: Final[str] = "[REDACTED]"

_CONSOLE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
_FILE_FORMAT: Final[str] = "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s"


class SecureLogFilter(logging.Filter):
    """
    Log filter that removes sensitive information from log records.

    Scans the message and its arguments for patterns that might carry
    sensitive data and replaces them with [REDACTED]. Records are always
    kept, only sanitized.
    """

    def __init__(self, name: str = "", additional_patterns: Optional[list[Pattern[str]]] = None) -> None:
        """
        Args:
            name: Logger name filter (empty string matches all)
            additional_patterns: Additional regex patterns to redact
        """
        super().__init__(name)
        self._additional_patterns = additional_patterns or []

    def filter(self, record: logging.LogRecord) -> bool:
        if record.msg and isinstance(record.msg, str):
            record.msg = self.sanitize(record.msg)

        if record.args:
            if isinstance(record.args, dict):
                record.args = {k: self._sanitize_arg(v) for k, v in record.args.items()}
            elif isinstance(record.args, tuple):
                record.args = tuple(self._sanitize_arg(arg) for arg in record.args)

        return True

    def _sanitize_arg(self, arg: object) -> object:
        if isinstance(arg, (bytes, bytearray, memoryview)):
            return _REDACTED_TEXT
        if isinstance(arg, str):
            return self.sanitize(arg)
        return arg

    def sanitize(self, text: str) -> str:
        """Remove sensitive data from text."""
        result = text

        for name, pattern in _SENSITIVE_PATTERNS:
            result = pattern.sub(f"{name}={_REDACTED_TEXT}", result)

        for pattern in self._additional_patterns:
            result = pattern.sub(_REDACTED_TEXT, result)

        return result


class StructuredLogFormatter(logging.Formatter):
    """Formatter that outputs one JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class SecureRotatingFileHandler(RotatingFileHandler):
    """
    Rotating file handler that keeps logs owner-only.

    The log directory is created with 0700 and the file with 0600 on
    POSIX systems.
    """

    def __init__(
        self,
        filename: str | Path,
        mode: str = "a",
        maxBytes: int = 10 * 1024 * 1024,
        backupCount: int = 5,
        encoding: str = "utf-8",
    ) -> None:
        log_path = Path(filename).resolve()

        log_path.parent.mkdir(parents=True, exist_ok=True)
        if os.name == "posix":
            log_path.parent.chmod(stat.S_IRWXU)

        super().__init__(
            str(log_path),
            mode=mode,
            maxBytes=maxBytes,
            backupCount=backupCount,
            encoding=encoding,
        )

        if os.name == "posix":
            log_path.chmod(stat.S_IRUSR | stat.S_IWUSR)


def get_secure_logger(
    name: str,
    log_dir: Optional[Path] = None,
    level: str = "INFO",
    enable_console: bool = True,
    enable_file: bool = True,
    enable_json: bool = False,
    max_file_size: int = 10 * 1024 * 1024,
    backup_count: int = 5,
) -> logging.Logger:
    """
    Create a secure logger with automatic secret filtering.

    Idempotent: a logger that already has handlers is returned unchanged.

    Args:
        name: Logger name
        log_dir: Directory for log files (no file output if None)
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        enable_console: Whether to output to stderr
        enable_file: Whether to output to file
        enable_json: Whether to use JSON format for file output
        max_file_size: Maximum log file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name)

    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    secure_filter = SecureLogFilter()

    if enable_console:
        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.DEBUG)
        console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        console_handler.addFilter(secure_filter)
        logger.addHandler(console_handler)

    if enable_file and log_dir:
        file_handler = SecureRotatingFileHandler(
            filename=Path(log_dir) / f"{name.replace('.', '_')}.log",
            maxBytes=max_file_size,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)

        if enable_json:
            file_handler.setFormatter(StructuredLogFormatter())
        else:
            file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

        file_handler.addFilter(secure_filter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def configure_logging(config: PassmanConfig, name: str = "passman") -> logging.Logger:
    """Install the secure logger for the passman hierarchy from configuration."""
    settings = config.logging
    return get_secure_logger(
        name,
        log_dir=config.paths.log_dir,
        level=settings.level,
        enable_console=settings.enable_console,
        enable_file=settings.enable_file,
        enable_json=settings.structured,
        max_file_size=settings.max_file_size_bytes,
        backup_count=settings.backup_count,
    )
