"""Exceptions raised by filecache."""

from typing import Optional


class CacheError(Exception):
    """Base exception for cache-related errors."""

    pass


class CacheDirectoryError(CacheError):
    """Raised when the cache directory cannot be created or read at startup."""

    pass


class InvalidKeyError(CacheError, ValueError):
    """Raised when a key does not map to a usable storage path."""

    pass


class NotFoundError(CacheError, KeyError):
    """Raised when a requested key has no backing file."""

    def __init__(self, key: str, path: Optional[str] = None):
        super().__init__(key)
        self.key = key
        self.path = path

    def __str__(self) -> str:
        return f"No cached file for key {self.key!r}"


class WriteError(CacheError):
    """Raised when a payload cannot be written to the cache."""

    pass


class SerializationError(WriteError):
    """Raised when a structured record cannot be encoded."""

    pass


class DeleteError(CacheError):
    """Raised when a cached file cannot be unlinked."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message)
        self.path = path


class PersistenceError(CacheError):
    """Raised when the metadata snapshot cannot be read or written."""

    pass


class ConfigError(CacheError, ValueError):
    """Raised by the size and duration parsers on malformed input."""

    pass
