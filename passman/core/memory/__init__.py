"""
passman Memory Security Module
==============================

Wipeable, best-effort page-locked buffers for keys and secrets.

WARNING:
- Python's memory model doesn't guarantee secure erasure
- Immutable copies (bytes, str) made while a secret is exposed cannot be wiped
"""

from passman.core.memory.secret import SecretMaterial, secure_zero

__all__ = ["SecretMaterial", "secure_zero"]
