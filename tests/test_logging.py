"""Tests for secure logging."""

import json
import logging

import pytest

from passman.core.config import LoggingConfig, PassmanConfig, PathConfig
from passman.core.logging import (
    SecureLogFilter,
    StructuredLogFormatter,
    configure_logging,
    get_secure_logger,
)


def _record(msg, *args) -> logging.LogRecord:
    return logging.LogRecord("passman.test", logging.INFO, __file__, 1, msg, args, None)


def _close(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


@pytest.fixture
def log_filter() -> SecureLogFilter:
    return SecureLogFilter()


class TestSecureLogFilter:
    @pytest.mark.parametrize(
        "message, leaked",
        [
            ("password=hunter2", "hunter2"),
            ("master_password: hunter2", "hunter2"),
            ("encryption_key=abcdef", "abcdef"),
            ("secret='s3cr3t!'", "s3cr3t!"),
            ("salt=c2FsdHNhbHQ", "c2FsdHNhbHQ"),
            ("verifier=0011aabb", "0011aabb"),
            ("token: eyJhbGciOi", "eyJhbGciOi"),
        ],
    )
    def test_redacts_assignments(self, log_filter, message, leaked):
        record = _record(message)
        log_filter.filter(record)
        assert leaked not in record.getMessage()
        assert "[REDACTED]" in record.getMessage()

    def test_redacts_long_hex(self, log_filter):
        record = _record("derived %s", "ab" * 32)
        log_filter.filter(record)
        assert "ab" * 32 not in record.getMessage()

    def test_redacts_bytes_arguments(self, log_filter):
        record = _record("value %r", b"raw key bytes")
        log_filter.filter(record)
        assert "raw key bytes" not in record.getMessage()

    def test_keeps_ordinary_messages(self, log_filter):
        record = _record("Failed unlock attempt %d", 2)
        log_filter.filter(record)
        assert record.getMessage() == "Failed unlock attempt 2"

    def test_always_keeps_record(self, log_filter):
        assert log_filter.filter(_record("password=x")) is True


class TestStructuredFormatter:
    def test_outputs_json(self):
        output = StructuredLogFormatter().format(_record("Vault locked"))
        data = json.loads(output)
        assert data["message"] == "Vault locked"
        assert data["level"] == "INFO"
        assert data["logger"] == "passman.test"


class TestGetSecureLogger:
    def test_file_output_is_redacted(self, temp_dir):
        logger = get_secure_logger(
            "passman.filetest", log_dir=temp_dir, enable_console=False
        )
        logger.info("unlock with password=hunter2")
        _close(logger)

        content = (temp_dir / "passman_filetest.log").read_text()
        assert "hunter2" not in content
        assert "[REDACTED]" in content

    def test_idempotent(self, temp_dir):
        first = get_secure_logger("passman.idem", log_dir=temp_dir, enable_console=True, enable_file=False)
        count = len(first.handlers)
        second = get_secure_logger("passman.idem", log_dir=temp_dir)
        assert second is first
        assert len(second.handlers) == count
        _close(first)

    def test_configure_from_config(self, temp_dir):
        config = PassmanConfig(
            paths=PathConfig(data_dir=temp_dir, config_dir=temp_dir, log_dir=temp_dir / "logs"),
            logging=LoggingConfig(level="DEBUG", enable_console=False, structured=True),
        )
        logger = configure_logging(config)
        assert logger.name == "passman"
        assert logger.level == logging.DEBUG
        assert not logger.propagate

        logger.getChild("auth").info("Vault unlocked")
        for handler in logger.handlers:
            handler.flush()
        line = (temp_dir / "logs" / "passman.log").read_text().strip().splitlines()[-1]
        assert json.loads(line)["logger"] == "passman.auth"
