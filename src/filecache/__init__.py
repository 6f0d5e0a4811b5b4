"""filecache: Filesystem-backed object cache with count, size and age eviction."""

__version__ = "0.1.0"

from filecache.config import CacheConfig
from filecache.errors import (
    CacheDirectoryError,
    CacheError,
    ConfigError,
    DeleteError,
    InvalidKeyError,
    NotFoundError,
    PersistenceError,
    SerializationError,
    WriteError,
)
from filecache.manager import FileCache
from filecache.payloads import ByteBuffer, ByteStream, Scalar, StructuredRecord
from filecache.utils import format_size, parse_duration, parse_size

__all__ = [
    "FileCache",
    "CacheConfig",
    "CacheError",
    "CacheDirectoryError",
    "ConfigError",
    "DeleteError",
    "InvalidKeyError",
    "NotFoundError",
    "PersistenceError",
    "SerializationError",
    "WriteError",
    "ByteBuffer",
    "ByteStream",
    "Scalar",
    "StructuredRecord",
    "format_size",
    "parse_duration",
    "parse_size",
    "__version__",
]
