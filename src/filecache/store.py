"""In-memory index of cached files.

The MetadataStore mirrors what is believed to exist on disk: one entry per
storage path with its size and last access time, plus running aggregates.
Every mutation of the entry mapping updates the aggregates in the same call,
under the store lock, so the aggregates never drift from the entry set.
"""

import math
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, List, NamedTuple, Optional

from filecache.utils import now_ms


@dataclass
class CacheEntry:
    """Metadata for one cached file.

    Attributes:
        path: Absolute storage path
        size: Size in bytes
        last_access_time: Wall-clock milliseconds of the last add or touch
    """

    path: str
    size: int
    last_access_time: int

    def to_dict(self) -> Dict[str, int]:
        return {"size": self.size, "last_access_time": self.last_access_time}


class StoreAggregate(NamedTuple):
    """Running totals over all entries."""

    used_space: int
    file_count: int
    oldest_access_time: float  # math.inf when empty


class MetadataStore:
    """Thread-safe mapping of storage path to CacheEntry with aggregates.

    ``oldest_access_time`` is a lower bound: it tightens on insert and is
    recomputed exactly by :meth:`replace`, :meth:`discard` and
    :meth:`recompute_oldest`, but is left alone by touch and remove.

    Examples:
        >>> store = MetadataStore()
        >>> store.upsert("/cache/a", 100, 1000)
        >>> store.aggregate()
        StoreAggregate(used_space=100, file_count=1, oldest_access_time=1000)
    """

    def __init__(self):
        self._lock = threading.RLock()
        self._entries: Dict[str, CacheEntry] = {}
        self._used_space = 0
        self._oldest = math.inf

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, path: str) -> bool:
        with self._lock:
            return path in self._entries

    def get(self, path: str) -> Optional[CacheEntry]:
        """Return a copy of the entry for ``path``, or None."""
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            return CacheEntry(entry.path, entry.size, entry.last_access_time)

    def upsert(self, path: str, size: int, last_access_time: int) -> None:
        """Insert or replace an entry; an existing size is subtracted first."""
        with self._lock:
            previous = self._entries.get(path)
            if previous is not None:
                self._used_space -= previous.size
            self._entries[path] = CacheEntry(path, int(size), int(last_access_time))
            self._used_space += int(size)
            self._oldest = min(self._oldest, last_access_time)

    def touch(self, path: str, last_access_time: Optional[int] = None) -> bool:
        """Refresh the access time of a known entry.

        Returns:
            True if the entry exists, False (no-op) otherwise
        """
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return False
            entry.last_access_time = (
                int(last_access_time) if last_access_time is not None else now_ms()
            )
            return True

    def remove(self, path: str) -> Optional[CacheEntry]:
        """Drop an entry. Absent paths are a no-op.

        Returns:
            The removed entry, or None if it was not tracked
        """
        with self._lock:
            entry = self._entries.pop(path, None)
            if entry is not None:
                self._used_space -= entry.size
            return entry

    def discard(self, paths: Iterable[str]) -> int:
        """Drop several entries and recompute the oldest access time.

        Returns:
            Number of entries actually removed
        """
        with self._lock:
            removed = 0
            for path in paths:
                if self.remove(path) is not None:
                    removed += 1
            self._recompute_oldest()
            return removed

    def replace(self, entries: Iterable[CacheEntry]) -> None:
        """Swap the whole entry set and recompute every aggregate."""
        with self._lock:
            self._entries = {
                e.path: CacheEntry(e.path, int(e.size), int(e.last_access_time))
                for e in entries
            }
            self._used_space = sum(e.size for e in self._entries.values())
            self._recompute_oldest()

    def clear(self) -> None:
        with self._lock:
            self._entries = {}
            self._used_space = 0
            self._oldest = math.inf

    def recompute_oldest(self) -> float:
        with self._lock:
            self._recompute_oldest()
            return self._oldest

    def _recompute_oldest(self) -> None:
        self._oldest = min(
            (e.last_access_time for e in self._entries.values()), default=math.inf
        )

    def entries(self) -> List[CacheEntry]:
        """Copies of all entries, in no particular order."""
        with self._lock:
            return [
                CacheEntry(e.path, e.size, e.last_access_time)
                for e in self._entries.values()
            ]

    def snapshot(self) -> Dict[str, Dict[str, int]]:
        """Immutable-by-copy view for persistence: path -> {size, last_access_time}."""
        with self._lock:
            return {path: e.to_dict() for path, e in self._entries.items()}

    def aggregate(self) -> StoreAggregate:
        with self._lock:
            return StoreAggregate(
                used_space=self._used_space,
                file_count=len(self._entries),
                oldest_access_time=self._oldest,
            )
