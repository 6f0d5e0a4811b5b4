"""Cache configuration management."""

import json
import os
import warnings
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Union

from filecache.errors import ConfigError
from filecache.utils import CONFIG_FILE, parse_duration, parse_size

MIN_CHECK_INTERVAL = 10.0  # seconds
DEFAULT_PERSIST_WRITE_THRESHOLD = 1000
DEFAULT_PERSIST_MAX_INTERVAL = 300.0  # 5 minutes


def _warn_disabled(field_name: str, value, error: Exception) -> None:
    warnings.warn(f"Ignoring {field_name}={value!r} ({error}); policy disabled")


@dataclass
class CacheConfig:
    """Configuration for a file cache.

    Size and duration fields accept either numbers or human-readable strings
    ("2.5 GB", "512KiB", "1h 30m"). Malformed values and zero disable the
    corresponding policy with a warning instead of raising.

    Attributes:
        cache_dir: Directory holding cached files and the snapshot sidecar
        max_files: Maximum number of cached files (None = unlimited)
        max_size: Maximum total size in bytes (None = unlimited)
        max_age: Maximum seconds since last access (None = unlimited)
        check_interval: Seconds between eviction checks. None uses the
            10 second minimum, 0 disables the eviction timer
        persist_interval: Seconds between snapshot checks (None = no snapshots)
        persist_write_threshold: Write operations after which a snapshot is due
        persist_max_interval: Seconds after which a snapshot is due
        cluster: Whether peers share this directory and exchange messages
        on_save: Hook invoked before each snapshot write in cluster mode
        scan_concurrency: Directories listed in parallel during startup scan
        unlink_concurrency: Files deleted in parallel during eviction
        lock_timeout: Seconds to wait for the snapshot write lock
    """

    cache_dir: Path = Path("cache")
    max_files: Optional[int] = None
    max_size: Optional[Union[int, str]] = None
    max_age: Optional[Union[float, str]] = None
    check_interval: Optional[Union[float, str]] = None
    persist_interval: Optional[Union[float, str]] = None
    persist_write_threshold: int = DEFAULT_PERSIST_WRITE_THRESHOLD
    persist_max_interval: float = DEFAULT_PERSIST_MAX_INTERVAL
    cluster: bool = False
    on_save: Optional[Callable[[], None]] = None
    scan_concurrency: int = 8
    unlink_concurrency: int = 5
    lock_timeout: float = 10.0

    def __post_init__(self):
        """Normalize paths, sizes and durations."""
        if self.cache_dir is None:
            self.cache_dir = Path("cache")
        self.cache_dir = Path(self.cache_dir).expanduser().resolve()

        self.max_files = self._normalize_count(self.max_files)
        self.max_size = self._normalize_size(self.max_size)
        self.max_age = self._normalize_duration("max_age", self.max_age)

        if self.check_interval is None:
            self.check_interval = MIN_CHECK_INTERVAL
        else:
            interval = self._normalize_duration("check_interval", self.check_interval)
            self.check_interval = (
                max(interval, MIN_CHECK_INTERVAL) if interval is not None else None
            )

        self.persist_interval = self._normalize_duration(
            "persist_interval", self.persist_interval
        )

        # Hooks only make sense when peers coordinate saves
        if not self.cluster:
            self.on_save = None

        self.scan_concurrency = max(int(self.scan_concurrency or 1), 1)
        self.unlink_concurrency = max(int(self.unlink_concurrency or 1), 1)

    @staticmethod
    def _normalize_count(value) -> Optional[int]:
        if value is None or value is False:
            return None
        try:
            count = int(value)
        except (TypeError, ValueError) as e:
            _warn_disabled("max_files", value, e)
            return None
        if count <= 0:
            return None
        return count

    @staticmethod
    def _normalize_size(value) -> Optional[int]:
        if value is None or value is False:
            return None
        try:
            size = parse_size(value)
        except ConfigError as e:
            _warn_disabled("max_size", value, e)
            return None
        return size or None

    @staticmethod
    def _normalize_duration(field_name: str, value) -> Optional[float]:
        if value is None or value is False:
            return None
        try:
            seconds = parse_duration(value)
        except ConfigError as e:
            _warn_disabled(field_name, value, e)
            return None
        return seconds or None

    @property
    def has_limits(self) -> bool:
        """True if any eviction policy is active."""
        return bool(self.max_files or self.max_size or self.max_age)

    @property
    def persist(self) -> bool:
        """True if snapshots are written."""
        return self.persist_interval is not None

    @classmethod
    def load(cls, config_path: Path, **overrides) -> "CacheConfig":
        """Load configuration from a JSON file.

        Args:
            config_path: Path to config file
            **overrides: Values that take precedence over the file (hooks)

        Returns:
            CacheConfig instance (defaults if the file does not exist)
        """
        config_path = Path(config_path)
        data = {}
        if config_path.exists():
            with open(config_path, "r") as f:
                data = json.load(f)
        data.update(overrides)
        return cls(**data)

    def save(self, config_path: Optional[Path] = None) -> None:
        """Save configuration to a JSON file. Hooks are not serialized.

        Args:
            config_path: Path to config file. If None, uses
                ``<cache_dir>/filecache.config.json``.
        """
        if config_path is None:
            config_path = self.cache_dir / CONFIG_FILE
        config_path = Path(config_path)
        config_path.parent.mkdir(parents=True, exist_ok=True)

        data = {
            "cache_dir": str(self.cache_dir),
            "max_files": self.max_files,
            "max_size": self.max_size,
            "max_age": self.max_age,
            "check_interval": self.check_interval if self.check_interval else 0,
            "persist_interval": self.persist_interval,
            "persist_write_threshold": self.persist_write_threshold,
            "persist_max_interval": self.persist_max_interval,
            "cluster": self.cluster,
            "scan_concurrency": self.scan_concurrency,
            "unlink_concurrency": self.unlink_concurrency,
            "lock_timeout": self.lock_timeout,
        }

        with open(config_path, "w") as f:
            json.dump(data, f, indent=2)

    @classmethod
    def from_env(cls, **overrides) -> "CacheConfig":
        """Create configuration from environment variables.

        Environment variables:
            FILECACHE_DIR: Cache directory path
            FILECACHE_MAX_FILES: Maximum number of files
            FILECACHE_MAX_SIZE: Maximum total size ("2GB", "512MiB", bytes)
            FILECACHE_MAX_AGE: Maximum entry age ("7d", seconds)
            FILECACHE_CHECK_INTERVAL: Eviction check interval
            FILECACHE_PERSIST_INTERVAL: Snapshot check interval
            FILECACHE_CLUSTER: Enable cluster mode (true/false)

        Args:
            **overrides: Values that take precedence over the environment

        Returns:
            CacheConfig instance
        """
        env_map = {
            "FILECACHE_DIR": "cache_dir",
            "FILECACHE_MAX_FILES": "max_files",
            "FILECACHE_MAX_SIZE": "max_size",
            "FILECACHE_MAX_AGE": "max_age",
            "FILECACHE_CHECK_INTERVAL": "check_interval",
            "FILECACHE_PERSIST_INTERVAL": "persist_interval",
        }
        data = {}
        for env_name, field_name in env_map.items():
            if os.getenv(env_name):
                data[field_name] = os.getenv(env_name)

        if os.getenv("FILECACHE_CLUSTER"):
            data["cluster"] = os.getenv("FILECACHE_CLUSTER", "").lower() == "true"

        data.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**data)
