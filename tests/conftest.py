"""Shared pytest fixtures for all tests."""

import logging
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Generator

import pytest

from passman.core.auth.authenticator import VaultAuthenticator
from passman.core.config import KdfConfig, LoggingConfig, PassmanConfig, PathConfig, SecurityConfig
from passman.core.crypto.kdf import CostParameters
from passman.core.memory.secret import SecretMaterial
from passman.core.vault import PasswordVault
from passman.db.store import VaultStore


@pytest.fixture(autouse=True)
def reset_passman_logger() -> Generator[None, None, None]:
    """Undo handlers and propagation changes made by configure_logging()."""
    yield
    logger = logging.getLogger("passman")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class FakeClock:
    """Controllable UTC clock."""

    def __init__(self) -> None:
        self.now = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


# ============================================================================
# File System Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Provide a temporary directory that's automatically cleaned up."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def vault_path(temp_dir: Path) -> Path:
    """Provide a temporary vault file path."""
    return temp_dir / "vault.db"


# ============================================================================
# Crypto Fixtures
# ============================================================================


@pytest.fixture
def fast_cost() -> CostParameters:
    """Argon2id parameters cheap enough for unit tests."""
    return CostParameters(memory_cost=64, time_cost=1, parallelism=1)


@pytest.fixture
def key() -> SecretMaterial:
    """Provide a random 32-byte key."""
    return SecretMaterial.random(32)


# ============================================================================
# Vault Fixtures
# ============================================================================


@pytest.fixture
def master_password() -> str:
    """Standard master password for tests."""
    return "Tr0ub4dor&3"


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def security_config() -> SecurityConfig:
    """Default policy: 15 minute sessions, 3 attempts, 5 minute lockout."""
    return SecurityConfig()


@pytest.fixture
def store(vault_path: Path) -> VaultStore:
    """Provide an empty, migrated vault store."""
    return VaultStore(vault_path)


@pytest.fixture
def authenticator(
    store: VaultStore,
    security_config: SecurityConfig,
    clock: FakeClock,
    master_password: str,
    fast_cost: CostParameters,
) -> VaultAuthenticator:
    """Provide an authenticator over an initialized, locked vault."""
    auth = VaultAuthenticator(store, security_config, clock=clock)
    auth.initialize_vault(master_password, fast_cost)
    return auth


@pytest.fixture
def config(temp_dir: Path, security_config: SecurityConfig) -> PassmanConfig:
    """Configuration rooted in the temporary directory with fast Argon2id."""
    return PassmanConfig(
        paths=PathConfig(
            data_dir=temp_dir / "data",
            config_dir=temp_dir / "config",
            log_dir=temp_dir / "logs",
        ),
        security=security_config,
        kdf=KdfConfig(memory_cost=64, time_cost=1, parallelism=1),
        logging=LoggingConfig(enable_console=False, enable_file=False),
    )


@pytest.fixture
def vault(config: PassmanConfig, clock: FakeClock, master_password: str) -> PasswordVault:
    """Provide a created, locked vault."""
    store = VaultStore(config.paths.database_path)
    vault = PasswordVault(store, config, clock=clock)
    vault.create(master_password)
    return vault
