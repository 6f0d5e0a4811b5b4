"""Utility functions for filecache."""

import posixpath
import re
import time
from pathlib import Path
from typing import Optional, Union

from filecache.errors import ConfigError, InvalidKeyError

# Cache directory layout constants
SNAPSHOT_FILE = ".filecache.json"  # Persisted access-time snapshot
SNAPSHOT_LOCK_FILE = SNAPSHOT_FILE + ".lock"
CONFIG_FILE = "filecache.config.json"
TEMP_SUFFIX = ".filecache-tmp"

RESERVED_NAMES = frozenset({SNAPSHOT_FILE, SNAPSHOT_LOCK_FILE, CONFIG_FILE})

_DECIMAL = 1000
_BINARY = 1024

# unit -> multiplier
SIZE_UNITS = {
    "": 1,
    "b": 1,
    "byte": 1,
    "bytes": 1,
}
for _exp, _names in enumerate(
    [
        ("k", "kb", "kbyte"),
        ("m", "mb", "mbyte"),
        ("g", "gb", "gbyte"),
        ("t", "tb", "tbyte"),
        ("p", "pb", "pbyte"),
    ],
    start=1,
):
    for _name in _names:
        SIZE_UNITS[_name] = _DECIMAL**_exp
for _exp, _names in enumerate(
    [
        ("ki", "kib", "kibi", "kibyte", "kibibyte"),
        ("mi", "mib", "mebi", "mibyte", "mebibyte"),
        ("gi", "gib", "gibi", "gibyte", "gibibyte"),
        ("ti", "tib", "tebi", "tibyte", "tebibyte"),
        ("pi", "pib", "pebi", "pibyte", "pebibyte"),
    ],
    start=1,
):
    for _name in _names:
        SIZE_UNITS[_name] = _BINARY**_exp

# unit -> seconds
DURATION_UNITS = {
    "ms": 0.001,
    "msec": 0.001,
    "millisecond": 0.001,
    "milliseconds": 0.001,
    "s": 1,
    "sec": 1,
    "secs": 1,
    "second": 1,
    "seconds": 1,
    "m": 60,
    "min": 60,
    "mins": 60,
    "minute": 60,
    "minutes": 60,
    "h": 3600,
    "hr": 3600,
    "hrs": 3600,
    "hour": 3600,
    "hours": 3600,
    "d": 86400,
    "day": 86400,
    "days": 86400,
    "w": 604800,
    "week": 604800,
    "weeks": 604800,
    "y": 31557600,
    "year": 31557600,
    "years": 31557600,
}

_SIZE_PATTERN = re.compile(r"^([0-9]+(?:[.,][0-9]+)?)\s*([a-z]*)$")
_DURATION_PART = re.compile(r"([0-9]+(?:\.[0-9]+)?)\s*([a-z]*)")


def now_ms() -> int:
    """Current wall-clock time in integer milliseconds."""
    return int(time.time() * 1000)


def parse_size(value: Union[int, float, str]) -> int:
    """Convert a human-readable size to a number of bytes.

    Decimal suffixes (k, M, G, T, P) use base 1000, binary suffixes
    (Ki, Mi, Gi, Ti, Pi) use base 1024. Unknown suffixes are read as bytes.

    Args:
        value: Byte count or size string

    Returns:
        Size in bytes, rounded to the nearest integer

    Raises:
        ConfigError: If the value cannot be parsed

    Examples:
        >>> parse_size("2KB")
        2000
        >>> parse_size("2KiB")
        2048
        >>> parse_size("1.5 GB")
        1500000000
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid size: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Size must be non-negative: {value!r}")
        return int(round(value))
    if not isinstance(value, str):
        raise ConfigError(f"Invalid size: {value!r}")

    match = _SIZE_PATTERN.match(value.strip().lower())
    if not match:
        raise ConfigError(f"Invalid size string: {value!r}")

    number = float(match.group(1).replace(",", "."))
    multiplier = SIZE_UNITS.get(match.group(2), 1)
    return int(round(number * multiplier))


def format_size(num_bytes: Union[int, float]) -> str:
    """Render a byte count with decimal prefixes.

    Examples:
        >>> format_size(999)
        '999B'
        >>> format_size(1500)
        '1.50KB'
    """
    n = int(num_bytes)
    if n < 1000:
        return f"{n}B"
    for exp, unit in enumerate(("KB", "MB", "GB", "TB"), start=1):
        if n < 1000 ** (exp + 1):
            return f"{n / 1000 ** exp:.2f}{unit}"
    return f"{n / 1000 ** 5:.2f}PB"


def parse_duration(value: Union[int, float, str]) -> float:
    """Convert a duration to seconds.

    Accepts a number of seconds or a string of ``<number><unit>`` groups,
    e.g. ``"90s"``, ``"1h 30m"``, ``"2 days"``. A bare number is seconds.

    Raises:
        ConfigError: If the value cannot be parsed
    """
    if isinstance(value, bool):
        raise ConfigError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        if value < 0:
            raise ConfigError(f"Duration must be non-negative: {value!r}")
        return float(value)
    if not isinstance(value, str):
        raise ConfigError(f"Invalid duration: {value!r}")

    text = value.strip().lower()
    if not text:
        raise ConfigError("Empty duration string")

    total = 0.0
    pos = 0
    for match in _DURATION_PART.finditer(text):
        # Only whitespace or commas may separate groups
        if text[pos : match.start()].strip(" ,"):
            raise ConfigError(f"Invalid duration string: {value!r}")
        unit = match.group(2) or "s"
        if unit not in DURATION_UNITS:
            raise ConfigError(f"Unknown duration unit {unit!r} in {value!r}")
        total += float(match.group(1)) * DURATION_UNITS[unit]
        pos = match.end()

    if pos == 0 or text[pos:].strip(" ,"):
        raise ConfigError(f"Invalid duration string: {value!r}")
    return total


def sanitize_key(key: str) -> str:
    """Normalize a cache key into a relative path confined to the cache.

    Leading separators are stripped, and ``.``/``..`` segments are dropped so
    the result can never escape the cache directory.

    Raises:
        InvalidKeyError: If nothing usable remains, or any segment is a
            reserved sidecar or temporary name

    Examples:
        >>> sanitize_key("/images/a.png")
        'images/a.png'
        >>> sanitize_key("../../etc/passwd")
        'etc/passwd'
    """
    if not isinstance(key, str):
        raise InvalidKeyError(f"Cache key must be a string, got {type(key).__name__}")

    normalized = posixpath.normpath(key.replace("\\", "/"))
    parts = [p for p in normalized.split("/") if p not in ("", ".", "..")]
    if not parts:
        raise InvalidKeyError(f"Cache key {key!r} does not name a file")
    if any(is_internal_name(p) for p in parts):
        # The startup scan skips these names at any depth
        raise InvalidKeyError(f"Cache key {key!r} uses a reserved name")
    return "/".join(parts)


def is_internal_name(name: str) -> bool:
    """True for sidecar and temporary files that are not cache entries."""
    return name in RESERVED_NAMES or name.endswith(TEMP_SUFFIX)


def resolve_key(cache_dir: Path, key: str) -> Path:
    """Resolve a key to its absolute storage path inside ``cache_dir``."""
    relative = sanitize_key(key)
    path = cache_dir.joinpath(*relative.split("/"))
    if not path.is_relative_to(cache_dir):
        raise InvalidKeyError(f"Cache key {key!r} escapes the cache directory")
    return path


def format_timestamp(ms: Optional[float]) -> str:
    """Render a millisecond timestamp for display."""
    if ms is None or ms == float("inf") or ms <= 0:
        return "-"
    return time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(ms / 1000))
