"""File cache facade: storage operations plus index bookkeeping."""

import logging
import os
import shutil
import threading
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, List, Optional

from filecache.cluster import ClusterMessage, ClusterSync, Publisher
from filecache.config import CacheConfig
from filecache.errors import (
    CacheDirectoryError,
    DeleteError,
    NotFoundError,
    SerializationError,
    WriteError,
)
from filecache.eviction import EvictionEngine, EvictionResult
from filecache.payloads import ByteBuffer, StructuredRecord, as_payload
from filecache.persistence import PersistenceManager, reconcile_entries
from filecache.scanner import scan_directory
from filecache.scheduler import PeriodicTask
from filecache.store import CacheEntry, MetadataStore
from filecache.utils import TEMP_SUFFIX, is_internal_name, now_ms, resolve_key

logger = logging.getLogger(__name__)


class FileCache:
    """Filesystem-backed object cache with size, count and age limits.

    Files live under ``config.cache_dir``; an in-memory index tracks the size
    and last access time of each one. Background timers evict entries when a
    limit is exceeded and periodically persist access times to a sidecar
    snapshot, so they survive restarts on filesystems with unreliable atime.

    Examples:
        >>> cache = FileCache(CacheConfig(cache_dir="/tmp/cache", max_size="1GB"))
        >>> cache.add("images/logo.png", b"...")
        PosixPath('/tmp/cache/images/logo.png')
        >>> cache.get("images/logo.png")
        b'...'
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        publish: Optional[Publisher] = None,
        start_timers: bool = True,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize the cache and rebuild the index from disk.

        Args:
            config: Cache configuration (defaults if None)
            publish: Transport for outbound cluster messages (cluster mode)
            start_timers: Start the eviction and persistence timers
            clock: Millisecond clock

        Raises:
            CacheDirectoryError: If the cache directory cannot be created or read
        """
        self.config = config or CacheConfig()
        self.cache_dir = self.config.cache_dir
        self._clock = clock

        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise CacheDirectoryError(
                f"Cannot create cache directory at {self.cache_dir}: {e}"
            ) from e

        self.store = MetadataStore()
        self.persistence = PersistenceManager(
            self.store,
            self.cache_dir,
            enabled=self.config.persist,
            write_threshold=self.config.persist_write_threshold,
            max_interval=self.config.persist_max_interval,
            on_save=self.config.on_save,
            lock_timeout=self.config.lock_timeout,
            clock=clock,
        )
        self.eviction = EvictionEngine(
            self.store,
            max_files=self.config.max_files,
            max_size=self.config.max_size,
            max_age=self.config.max_age,
            concurrency=self.config.unlink_concurrency,
            clock=clock,
        )
        self.cluster = ClusterSync(
            self.store,
            self.persistence,
            publish=publish,
            enabled=self.config.cluster,
            clock=clock,
        )

        self._reconcile()

        self._timers: List[PeriodicTask] = []
        if start_timers:
            self.start()

    def __repr__(self) -> str:
        return f"FileCache({str(self.cache_dir)!r})"

    def __enter__(self) -> "FileCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    # ==================== Lifecycle ====================

    def _reconcile(self) -> None:
        """Rebuild the index from a directory scan and the last snapshot."""
        try:
            scanned = scan_directory(
                self.cache_dir,
                concurrency=self.config.scan_concurrency,
                exclude=is_internal_name,
            )
        except OSError as e:
            raise CacheDirectoryError(
                f"Cannot read cache directory at {self.cache_dir}: {e}"
            ) from e

        recorded = self.persistence.load()
        self.store.replace(reconcile_entries(scanned, recorded))

        aggregate = self.store.aggregate()
        logger.debug(
            f"Loaded {aggregate.file_count} files ({aggregate.used_space} bytes) "
            f"from {self.cache_dir}"
        )

    def start(self) -> None:
        """Start the background eviction and persistence timers."""
        if self._timers:
            return
        if self.config.check_interval and self.eviction.enabled:
            self._timers.append(
                PeriodicTask(
                    self.config.check_interval,
                    self._eviction_tick,
                    name="filecache-eviction",
                )
            )
        if self.config.persist:
            self._timers.append(
                PeriodicTask(
                    self.config.persist_interval,
                    self._persistence_tick,
                    name="filecache-persistence",
                )
            )
        for timer in self._timers:
            timer.start()

    def close(self) -> None:
        """Stop the background timers."""
        for timer in self._timers:
            timer.stop()
        self._timers = []

    def _eviction_tick(self) -> None:
        if self.eviction.needs_eviction():
            self.evict()
        else:
            logger.debug("Nothing to clean up")

    def _persistence_tick(self) -> None:
        if self.persistence.is_due():
            self.save()

    # ==================== Paths ====================

    def path_for(self, key: str) -> Path:
        """Absolute storage path for a key.

        Raises:
            InvalidKeyError: If the key cannot be mapped inside the cache
        """
        return resolve_key(self.cache_dir, key)

    # ==================== Entry operations ====================

    def check(self, key: str) -> bool:
        """Check whether a file exists for ``key`` (ignores the index)."""
        return self.path_for(key).is_file()

    def add(self, key: str, data: Any) -> Path:
        """Store a payload under ``key``.

        Args:
            key: Cache key (sanitized into a path inside the cache)
            data: Binary file object, iterator of byte chunks, bytes,
                JSON-serializable record, scalar, or a Payload instance

        Returns:
            Absolute storage path

        Raises:
            SerializationError: If a record cannot be serialized
            WriteError: If the directory or file cannot be written
        """
        cache_path = self.path_for(key)
        payload = as_payload(data)
        if isinstance(payload, StructuredRecord):
            # Fail on unserializable records before touching the disk
            payload = ByteBuffer(payload.encode())

        try:
            cache_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            logger.error(f"Cannot create directory {cache_path.parent}: {e}")
            raise WriteError(f"Cannot create cache directory: {e}") from e

        # Write to temp file first (atomic write)
        temp_path = cache_path.with_name(
            f".{cache_path.name}.{os.getpid()}.{threading.get_ident()}{TEMP_SUFFIX}"
        )
        try:
            with open(temp_path, "wb") as f:
                payload.write_to(f)
            os.replace(temp_path, cache_path)
            size = cache_path.stat().st_size
        except Exception as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"Failed to clean up temp file: {cleanup_error}")
            if isinstance(e, SerializationError):
                raise
            logger.error(f"Error saving file {cache_path}: {e}")
            raise WriteError(f"Cannot write cache file {cache_path}: {e}") from e

        path = str(cache_path)
        entry = CacheEntry(path, size, self._clock())
        self.store.upsert(entry.path, entry.size, entry.last_access_time)
        self.persistence.record_write()
        self.cluster.publish_add(entry)
        return cache_path

    def get(self, key: str) -> bytes:
        """Read the cached file for ``key``. Does not count as an access.

        Raises:
            NotFoundError: If no file exists for ``key``
        """
        cache_path = self.path_for(key)
        try:
            return cache_path.read_bytes()
        except (FileNotFoundError, IsADirectoryError) as e:
            logger.debug(f"get: file {cache_path} does not exist")
            raise NotFoundError(key, str(cache_path)) from e

    def stream(self, key: str, check_exists: bool = True) -> BinaryIO:
        """Open the cached file for ``key`` as a single-pass binary stream.

        The caller owns the returned file object and should close it.

        Args:
            key: Cache key
            check_exists: Raise NotFoundError up front for a missing file.
                With False the file is opened directly and a missing file
                surfaces as FileNotFoundError.

        Raises:
            NotFoundError: If ``check_exists`` and no file exists for ``key``
        """
        cache_path = self.path_for(key)
        if not check_exists:
            return open(cache_path, "rb")
        if not cache_path.is_file():
            logger.debug(f"stream: file {cache_path} does not exist")
            raise NotFoundError(key, str(cache_path))
        try:
            return open(cache_path, "rb")
        except FileNotFoundError as e:
            raise NotFoundError(key, str(cache_path)) from e

    def touch(self, key: str) -> bool:
        """Mark a known entry as accessed now. Unknown keys are a no-op.

        Returns:
            True if the entry was known
        """
        path = str(self.path_for(key))
        if not self.store.touch(path, self._clock()):
            return False
        self.cluster.publish_touch(path)
        return True

    def remove(self, key: str) -> bool:
        """Delete the cached file for ``key``. Missing files are a no-op.

        Returns:
            True if a file was removed

        Raises:
            DeleteError: If the file exists but cannot be unlinked
        """
        cache_path = self.path_for(key)
        if not cache_path.is_file():
            logger.debug(f"remove: file {cache_path} does not exist")
            return False

        try:
            cache_path.unlink()
        except FileNotFoundError:
            # Removed concurrently; the outcome is the same
            pass
        except OSError as e:
            logger.error(f"remove: could not unlink file {cache_path}: {e}")
            raise DeleteError(f"Cannot remove {cache_path}: {e}", str(cache_path)) from e

        path = str(cache_path)
        self.store.remove(path)
        self.persistence.record_write()
        self.cluster.publish_remove(path)
        return True

    def purge(self) -> None:
        """Delete the whole cache directory and reset the index.

        Raises:
            DeleteError: If the directory tree cannot be removed
        """
        if self.cache_dir.exists():
            try:
                shutil.rmtree(self.cache_dir)
            except OSError as e:
                logger.error(f"Error purging directory {self.cache_dir}: {e}")
                raise DeleteError(
                    f"Cannot purge {self.cache_dir}: {e}", str(self.cache_dir)
                ) from e
        logger.debug(f"Purged directory {self.cache_dir}")

        self.store.clear()
        self.persistence.reset()
        self.eviction.last_run = 0

    # ==================== Maintenance ====================

    def evict(self, now: Optional[int] = None) -> EvictionResult:
        """Run an eviction cycle now.

        When anything was selected, a snapshot is saved and, in cluster mode,
        each removed path is published to peers.
        """
        result = self.eviction.run(now)
        if result:
            for path in result.removed:
                self.cluster.publish_remove(path)
            self.save()
        return result

    def save(self) -> bool:
        """Persist the index snapshot (when persistence is enabled).

        Returns:
            True if a snapshot was written
        """
        saved = self.persistence.save()
        if saved:
            self.cluster.publish_save()
        return saved

    def handle_message(self, message: ClusterMessage) -> bool:
        """Apply a cluster message received from a peer process."""
        return self.cluster.handle(message)

    # ==================== Introspection ====================

    def entries(self) -> List[CacheEntry]:
        """Copies of all index entries, least recently accessed first."""
        return sorted(
            self.store.entries(), key=lambda e: (e.last_access_time, e.path)
        )

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics.

        Returns:
            Statistics dict
        """
        aggregate = self.store.aggregate()
        return {
            "cache_dir": str(self.cache_dir),
            "used_space": aggregate.used_space,
            "file_count": aggregate.file_count,
            "oldest_access_time": (
                None
                if aggregate.oldest_access_time == float("inf")
                else aggregate.oldest_access_time
            ),
            "write_ops": self.persistence.write_ops,
            "last_snapshot": self.persistence.last_saved or None,
            "last_eviction": self.eviction.last_run or None,
            "max_files": self.config.max_files,
            "max_size": self.config.max_size,
            "max_age": self.config.max_age,
        }


