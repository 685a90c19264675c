"""
Password Generator
==================

Random entry passwords drawn from the OS CSPRNG.

Every enabled character class contributes at least one character; the
rest are drawn from the combined set and the result is shuffled so the
guaranteed characters do not sit at fixed positions.

The password is assembled in a bytearray and handed back as
SecretMaterial, so it never exists as an immutable str inside this module.
"""

from __future__ import annotations

import secrets
import string
from typing import Final, List, Optional

from passman.core.config import GeneratorConfig
from passman.core.memory.secret import SecretMaterial, secure_zero

MAX_LENGTH: Final[int] = 1024

LOWERCASE: Final[bytes] = string.ascii_lowercase.encode("ascii")
UPPERCASE: Final[bytes] = string.ascii_uppercase.encode("ascii")
DIGITS: Final[bytes] = string.digits.encode("ascii")


class PasswordGenerationError(ValueError):
    """Raised when the requested password cannot be generated."""
    pass


def character_classes(config: GeneratorConfig) -> List[bytes]:
    """The enabled character classes, in a fixed order."""
    classes = []
    if config.include_lowercase:
        classes.append(LOWERCASE)
    if config.include_uppercase:
        classes.append(UPPERCASE)
    if config.include_numbers:
        classes.append(DIGITS)
    if config.include_symbols and config.symbol_set:
        classes.append(config.symbol_set.encode("ascii"))
    return classes


class PasswordGenerator:
    """
    Generates passwords according to a GeneratorConfig.

    Usage:
        generator = PasswordGenerator(config.generator)

        with generator.generate() as password:
            vault.add_entry(session, "GitHub", "alice", password)
    """

    __slots__ = ("_config",)

    def __init__(self, config: Optional[GeneratorConfig] = None) -> None:
        self._config = config or GeneratorConfig()

    @property
    def config(self) -> GeneratorConfig:
        return self._config

    def generate(self, length: Optional[int] = None) -> SecretMaterial:
        """
        Generate one password.

        Args:
            length: Number of characters; defaults to config.default_length

        Returns:
            The password as ASCII bytes in a SecretMaterial owned by the caller

        Raises:
            PasswordGenerationError: If length is out of range, no character
                class is enabled, or length is too short to hold one
                character of every enabled class
        """
        length = self._config.default_length if length is None else length
        if length < 1:
            raise PasswordGenerationError("Password length cannot be zero")
        if length > MAX_LENGTH:
            raise PasswordGenerationError(
                f"Password length ({length}) exceeds the maximum of {MAX_LENGTH}"
            )

        classes = character_classes(self._config)
        if not classes:
            raise PasswordGenerationError("No character sets selected")
        if length < len(classes):
            raise PasswordGenerationError(
                f"Password length ({length}) must be at least {len(classes)} "
                f"to include one character from each enabled character class"
            )

        charset = b"".join(classes)
        buffer = bytearray(length)
        try:
            for i, chars in enumerate(classes):
                buffer[i] = secrets.choice(chars)
            for i in range(len(classes), length):
                buffer[i] = secrets.choice(charset)

            for i in range(length - 1, 0, -1):
                j = secrets.randbelow(i + 1)
                buffer[i], buffer[j] = buffer[j], buffer[i]

            return SecretMaterial(buffer)
        finally:
            secure_zero(buffer)

    def generate_batch(self, count: int, length: Optional[int] = None) -> List[SecretMaterial]:
        """Generate count independent passwords."""
        if count < 0:
            raise PasswordGenerationError("count cannot be negative")
        return [self.generate(length) for _ in range(count)]


def generate_password(length: int = 16) -> SecretMaterial:
    """Generate a password with every character class enabled."""
    return PasswordGenerator().generate(length)


def generate_alphanumeric_password(length: int = 16) -> SecretMaterial:
    """Generate a password of letters and digits only."""
    return PasswordGenerator(GeneratorConfig(include_symbols=False)).generate(length)


__all__ = [
    "MAX_LENGTH",
    "PasswordGenerationError",
    "PasswordGenerator",
    "character_classes",
    "generate_alphanumeric_password",
    "generate_password",
]
