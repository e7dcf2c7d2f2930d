"""Credential storage backends."""

from .token_storage import (
    FileTokenStorage,
    MemoryTokenStorage,
    TokenStorage,
    TokenStorageError,
)

__all__ = [
    "TokenStorage",
    "TokenStorageError",
    "MemoryTokenStorage",
    "FileTokenStorage",
]
