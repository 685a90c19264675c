"""
Core module - configuration, logging and the vault security core.
"""

from passman.core.config import PassmanConfig
from passman.core.logging import SecureLogFilter, get_secure_logger

__all__ = ["PassmanConfig", "get_secure_logger", "SecureLogFilter"]
