"""
Secure Configuration Module
===========================

Immutable, environment-aware configuration with security-first defaults.

Resolution order (later wins):
    1. Built-in defaults
    2. TOML file (config_dir/config.toml, or an explicit path)
    3. Environment variables: PASSMAN_SECTION__KEY=value

Security Features:
- Immutable configuration after initialization
- No secrets in default values
- Sensitive-looking keys are never read from the environment
- OS-aware path handling
"""

from __future__ import annotations

import dataclasses
import hashlib
import os
import platform
import stat
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Mapping, Optional

from passman.core.crypto.kdf import (
    ARGON2_MEMORY_COST,
    ARGON2_PARALLELISM,
    ARGON2_TIME_COST,
    CostParameters,
)

APP_DIR_NAME: Final[str] = "passman"
CONFIG_FILE_NAME: Final[str] = "config.toml"

_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "private", "credential", "auth", "salt"
})

_VALID_LEVELS: Final[frozenset[str]] = frozenset({"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"})


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / APP_DIR_NAME


def _get_default_config_dir() -> Path:
    """Get OS-appropriate default config directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("APPDATA", Path.home() / "AppData" / "Roaming"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Preferences"
    else:
        base = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))

    return base / APP_DIR_NAME


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / APP_DIR_NAME / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / APP_DIR_NAME
    else:
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / APP_DIR_NAME / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    config_dir: Path = field(default_factory=_get_default_config_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)
    database_name: str = "passman.db"

    def __post_init__(self) -> None:
        for field_name in ("data_dir", "config_dir", "log_dir"):
            path = getattr(self, field_name)
            if not Path(path).is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")
        if not self.database_name or Path(self.database_name).name != self.database_name:
            raise ValueError(f"database_name must be a plain file name: {self.database_name!r}")

    @property
    def database_path(self) -> Path:
        return self.data_dir / self.database_name


@dataclass(frozen=True, slots=True)
class SecurityConfig:
    """
    Session and lockout policy.

    A session_timeout_seconds of 0 means sessions never expire.
    """

    session_timeout_seconds: int = 900  # 15 minutes
    max_login_attempts: int = 3
    lockout_duration_seconds: int = 300  # 5 minutes
    clipboard_timeout_seconds: int = 30

    def __post_init__(self) -> None:
        if self.session_timeout_seconds < 0:
            raise ValueError("session_timeout_seconds cannot be negative")
        if self.max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        if self.lockout_duration_seconds < 1:
            raise ValueError("lockout_duration_seconds must be at least 1")
        if self.clipboard_timeout_seconds < 0:
            raise ValueError("clipboard_timeout_seconds cannot be negative")


@dataclass(frozen=True, slots=True)
class KdfConfig:
    """Argon2id cost used when creating a new vault. Existing vaults keep theirs."""

    memory_cost: int = ARGON2_MEMORY_COST
    time_cost: int = ARGON2_TIME_COST
    parallelism: int = ARGON2_PARALLELISM

    def __post_init__(self) -> None:
        self.to_cost_parameters().validate()

    def to_cost_parameters(self) -> CostParameters:
        return CostParameters(
            memory_cost=self.memory_cost,
            time_cost=self.time_cost,
            parallelism=self.parallelism,
        )


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    format: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    enable_console: bool = True
    enable_file: bool = True
    structured: bool = False

    def __post_init__(self) -> None:
        if self.level.upper() not in _VALID_LEVELS:
            raise ValueError(f"Invalid log level: {self.level}")


DEFAULT_SYMBOL_SET: Final[str] = "!@#$%^&*()-_=+[]{}|;:,.<>?"


@dataclass(frozen=True, slots=True)
class GeneratorConfig:
    """Defaults for generated entry passwords."""

    default_length: int = 16
    include_uppercase: bool = True
    include_lowercase: bool = True
    include_numbers: bool = True
    include_symbols: bool = True
    symbol_set: str = DEFAULT_SYMBOL_SET

    def __post_init__(self) -> None:
        if self.default_length < 1:
            raise ValueError("default_length must be at least 1")
        if self.include_symbols and not self.symbol_set:
            raise ValueError("symbol_set cannot be empty when symbols are included")
        if not (self.symbol_set.isascii() and self.symbol_set.isprintable()):
            raise ValueError("symbol_set must contain printable ASCII characters only")
        if " " in self.symbol_set:
            raise ValueError("symbol_set cannot contain spaces")


_SECTIONS: Final[Mapping[str, type]] = {
    "paths": PathConfig,
    "security": SecurityConfig,
    "kdf": KdfConfig,
    "logging": LoggingConfig,
    "generator": GeneratorConfig,
}


def _coerce(section: type, name: str, value: Any) -> Any:
    """Convert a raw file or environment value to the field's type."""
    default = getattr(section(), name)

    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        text = str(value).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Invalid boolean for {name}: {value!r}")
    if isinstance(default, int):
        if isinstance(value, bool):
            raise ValueError(f"Invalid integer for {name}: {value!r}")
        try:
            return int(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid integer for {name}: {value!r}") from None
    if isinstance(default, Path):
        return Path(value).expanduser()
    return str(value)


class PassmanConfig:
    """
    Centralized, immutable configuration.

    Usage:
        config = PassmanConfig.load()
        db_path = config.paths.database_path
        timeout = config.security.session_timeout_seconds
    """

    __slots__ = (
        "_paths", "_security", "_kdf", "_logging", "_generator", "_frozen", "_config_hash"
    )

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        security: Optional[SecurityConfig] = None,
        kdf: Optional[KdfConfig] = None,
        logging: Optional[LoggingConfig] = None,
        generator: Optional[GeneratorConfig] = None,
    ) -> None:
        """Initialize configuration. Use PassmanConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_security", security or SecurityConfig())
        object.__setattr__(self, "_kdf", kdf or KdfConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_generator", generator or GeneratorConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        config_str = (
            f"{self._paths}|{self._security}|{self._kdf}|{self._logging}|{self._generator}"
        )
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def security(self) -> SecurityConfig:
        return self._security

    @property
    def kdf(self) -> KdfConfig:
        return self._kdf

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def generator(self) -> GeneratorConfig:
        return self._generator

    @property
    def config_hash(self) -> str:
        return self._config_hash

    @classmethod
    def load(
        cls,
        env_prefix: str = "PASSMAN",
        config_file: Optional[Path] = None,
    ) -> PassmanConfig:
        """
        Load configuration from defaults, a TOML file and the environment.

        Environment variables use double underscores between section and key:

            PASSMAN_SECURITY__SESSION_TIMEOUT_SECONDS=0
            PASSMAN_PATHS__DATA_DIR=/custom/path
            PASSMAN_LOGGING__LEVEL=DEBUG
            PASSMAN_GENERATOR__DEFAULT_LENGTH=24

        Args:
            env_prefix: Prefix for environment variables
            config_file: TOML file to read; defaults to config_dir/config.toml
                when that file exists

        Raises:
            ValueError: On unknown file keys or invalid values
            FileNotFoundError: If an explicit config_file does not exist
        """
        values: dict[str, dict[str, Any]] = {name: {} for name in _SECTIONS}
        env_overrides = cls._parse_env_overrides(env_prefix)

        if config_file is None:
            config_dir = env_overrides.get("paths.config_dir")
            base = Path(config_dir).expanduser() if config_dir else _get_default_config_dir()
            candidate = base / CONFIG_FILE_NAME
            config_file = candidate if candidate.is_file() else None

        if config_file is not None:
            for section, key, value in cls._read_file(Path(config_file)):
                values[section][key] = value

        for dotted, value in env_overrides.items():
            section, _, key = dotted.partition(".")
            if cls._is_field(section, key):
                values[section][key] = value

        kwargs = {
            section: _SECTIONS[section](**{
                key: _coerce(_SECTIONS[section], key, raw) for key, raw in raw_values.items()
            })
            for section, raw_values in values.items()
            if raw_values
        }
        return cls(**kwargs)

    @staticmethod
    def _is_field(section: str, key: str) -> bool:
        section_type = _SECTIONS.get(section)
        if section_type is None:
            return False
        return key in {f.name for f in dataclasses.fields(section_type)}

    @classmethod
    def _read_file(cls, path: Path) -> list[tuple[str, str, Any]]:
        with path.open("rb") as f:
            data = tomllib.load(f)

        entries = []
        for section, table in data.items():
            if not isinstance(table, dict) or section not in _SECTIONS:
                raise ValueError(f"Unknown configuration section: {section}")
            for key, value in table.items():
                if not cls._is_field(section, key):
                    raise ValueError(f"Unknown configuration key: {section}.{key}")
                entries.append((section, key, value))
        return entries

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: Skip sensitive keys from environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    def ensure_directories(self) -> None:
        """Create all required directories with owner-only permissions."""
        for directory in (self._paths.data_dir, self._paths.config_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)

            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"PassmanConfig(hash={self._config_hash})"

    def __setattr__(self, name: str, value: Any) -> None:
        if getattr(self, "_frozen", False):
            raise AttributeError("PassmanConfig is immutable after initialization")
        super().__setattr__(name, value)
