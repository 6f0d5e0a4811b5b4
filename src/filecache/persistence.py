"""Snapshot persistence for the metadata index.

The snapshot file (.filecache.json) maps each storage path to its size and
last access time. It exists because filesystem access times are often
disabled or coarse; it is never the system of record. At startup the
directory scan decides which files exist and how large they are, and the
snapshot can only raise the access time the scan reported.
"""

import json
import logging
import os
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional

from filelock import FileLock, Timeout

from filecache.errors import PersistenceError
from filecache.scanner import ScannedFile
from filecache.store import CacheEntry, MetadataStore
from filecache.utils import SNAPSHOT_FILE, SNAPSHOT_LOCK_FILE, TEMP_SUFFIX, now_ms

logger = logging.getLogger(__name__)


def reconcile_entries(
    scanned: Iterable[ScannedFile], recorded: Dict[str, int]
) -> List[CacheEntry]:
    """Merge scan results with recorded access times.

    Args:
        scanned: Files found on disk (authoritative for existence and size)
        recorded: path -> last access time from a previous snapshot

    Returns:
        One entry per scanned file, with the later of the two access times.
        Recorded paths that were not scanned are dropped.
    """
    entries = []
    for f in scanned:
        last_access = f.last_access_time
        snapshot_time = recorded.get(f.path)
        if snapshot_time is not None and snapshot_time > last_access:
            last_access = snapshot_time
        entries.append(CacheEntry(f.path, f.size, last_access))
    return entries


class PersistenceManager:
    """Writes and reads the metadata snapshot and decides when one is due.

    A snapshot is due once ``write_threshold`` write operations have happened
    since the last one, or ``max_interval`` seconds have passed.
    """

    def __init__(
        self,
        store: MetadataStore,
        cache_dir: Path,
        enabled: bool = True,
        write_threshold: int = 1000,
        max_interval: float = 300.0,
        on_save: Optional[Callable[[], None]] = None,
        lock_timeout: float = 10.0,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.cache_dir = Path(cache_dir)
        self.snapshot_path = self.cache_dir / SNAPSHOT_FILE
        self.lock_path = self.cache_dir / SNAPSHOT_LOCK_FILE
        self.enabled = enabled
        self.write_threshold = write_threshold
        self.max_interval_ms = int(max_interval * 1000)
        self.on_save = on_save
        self.lock_timeout = lock_timeout
        self._clock = clock

        self.write_ops = 0
        self.last_saved = 0

    def record_write(self) -> None:
        self.write_ops += 1

    def mark_saved(self, when: Optional[int] = None) -> None:
        """Reset the snapshot timer, e.g. after a peer saved."""
        self.last_saved = when if when is not None else self._clock()

    def reset(self) -> None:
        self.write_ops = 0
        self.last_saved = 0

    def is_due(self, now: Optional[int] = None) -> bool:
        if not self.enabled:
            return False
        if now is None:
            now = self._clock()
        if self.write_ops >= self.write_threshold:
            return True
        return now - self.last_saved >= self.max_interval_ms

    def save(self) -> bool:
        """Write the snapshot if persistence is enabled.

        Failures are logged and reported through the return value; the next
        scheduled trigger will try again.

        Returns:
            True if a snapshot was written
        """
        if not self.enabled:
            return False

        if self.on_save is not None:
            try:
                self.on_save()
            except Exception as e:
                logger.warning(f"Pre-save hook failed, saving anyway: {e}")

        try:
            self._write_snapshot(self.store.snapshot())
        except PersistenceError as e:
            logger.warning(f"Could not save metadata snapshot: {e}")
            return False

        self.write_ops = 0
        self.last_saved = self._clock()
        logger.debug(f"Saved {self.snapshot_path}")
        return True

    def _write_snapshot(self, data: Dict[str, Dict[str, int]]) -> None:
        """Atomically replace the snapshot file.

        Raises:
            PersistenceError: If the lock cannot be taken or the write fails
        """
        temp_path = self.snapshot_path.with_name(
            f"{SNAPSHOT_FILE}.{os.getpid()}{TEMP_SUFFIX}"
        )
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            with FileLock(self.lock_path, timeout=self.lock_timeout):
                with open(temp_path, "w") as f:
                    json.dump(data, f)
                os.replace(temp_path, self.snapshot_path)
        except Timeout as e:
            raise PersistenceError(
                f"Timeout acquiring snapshot lock after {self.lock_timeout} seconds"
            ) from e
        except (OSError, TypeError, ValueError) as e:
            if temp_path.exists():
                try:
                    temp_path.unlink()
                except OSError as cleanup_error:
                    logger.warning(f"Failed to clean up temp file: {cleanup_error}")
            raise PersistenceError(f"Cannot write {self.snapshot_path}: {e}") from e

    def load(self) -> Dict[str, int]:
        """Read recorded access times from the snapshot.

        A missing, empty or unparsable snapshot yields an empty mapping.

        Returns:
            path -> last access time in milliseconds
        """
        try:
            return self._read_snapshot()
        except PersistenceError as e:
            logger.warning(f"Ignoring metadata snapshot: {e}")
            return {}

    def _read_snapshot(self) -> Dict[str, int]:
        if not self.snapshot_path.exists():
            return {}
        try:
            with open(self.snapshot_path, "r") as f:
                content = f.read()
        except OSError as e:
            raise PersistenceError(f"Cannot read {self.snapshot_path}: {e}") from e

        if not content.strip():
            return {}
        try:
            data = json.loads(content)
        except json.JSONDecodeError as e:
            raise PersistenceError(f"Corrupted snapshot {self.snapshot_path}: {e}") from e
        if not isinstance(data, dict):
            raise PersistenceError(f"Unexpected snapshot layout in {self.snapshot_path}")

        recorded = {}
        for path, record in data.items():
            try:
                recorded[path] = int(record["last_access_time"])
            except (KeyError, TypeError, ValueError):
                # Skip malformed records, keep the rest
                continue
        return recorded
