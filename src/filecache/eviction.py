"""Eviction of cached files by age, count and total size."""

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from filecache.scanner import DEFAULT_UNLINK_CONCURRENCY, unlink_paths
from filecache.store import CacheEntry, MetadataStore
from filecache.utils import format_size, now_ms

logger = logging.getLogger(__name__)


@dataclass
class EvictionResult:
    """Outcome of one eviction cycle.

    Attributes:
        removed: Paths deleted from disk and dropped from the index
        failed: Paths selected for eviction whose unlink failed (kept in the index)
        freed_bytes: Total size of the removed entries
    """

    removed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    freed_bytes: int = 0

    def __bool__(self) -> bool:
        return bool(self.removed or self.failed)


def select_victims(
    entries: Sequence[CacheEntry],
    now: int,
    max_files: Optional[int] = None,
    max_size: Optional[int] = None,
    max_age_ms: Optional[int] = None,
) -> Tuple[List[CacheEntry], List[CacheEntry]]:
    """Split entries into those to keep and those to evict.

    Entries older than ``max_age_ms`` are always evicted. The remaining
    entries are ordered by last access time (ties by path) and the least
    recently accessed are evicted until both the count and the size limit
    hold. Age is decided before size, so a large recent file never shields
    a small stale one.

    Args:
        entries: Current index entries
        now: Current time in milliseconds
        max_files: Maximum number of entries to keep
        max_size: Maximum total bytes to keep
        max_age_ms: Maximum milliseconds since last access

    Returns:
        (kept, victims), kept sorted oldest-accessed first
    """
    victims = []
    kept = []
    for entry in entries:
        if max_age_ms and now - entry.last_access_time > max_age_ms:
            victims.append(entry)
        else:
            kept.append(entry)

    kept.sort(key=lambda e: (e.last_access_time, e.path))

    evict_from = 0
    if max_files and len(kept) > max_files:
        evict_from = len(kept) - max_files

    if max_size:
        size = sum(e.size for e in kept[evict_from:])
        while size > max_size and evict_from < len(kept):
            size -= kept[evict_from].size
            evict_from += 1

    victims.extend(kept[:evict_from])
    return kept[evict_from:], victims


class EvictionEngine:
    """Applies eviction policies to a MetadataStore.

    Failed unlinks are not dropped from the store, so bookkeeping never
    undercounts what is on disk.

    Examples:
        >>> engine = EvictionEngine(store, max_files=3, max_age=7 * 86400)
        >>> if engine.needs_eviction():
        ...     result = engine.run()
    """

    def __init__(
        self,
        store: MetadataStore,
        max_files: Optional[int] = None,
        max_size: Optional[int] = None,
        max_age: Optional[float] = None,
        concurrency: int = DEFAULT_UNLINK_CONCURRENCY,
        clock: Callable[[], int] = now_ms,
    ):
        """Initialize eviction engine.

        Args:
            store: Index to evict from
            max_files: Maximum number of files (None = unlimited)
            max_size: Maximum total bytes (None = unlimited)
            max_age: Maximum seconds since last access (None = unlimited)
            concurrency: Maximum simultaneous unlinks
            clock: Millisecond clock
        """
        self.store = store
        self.max_files = max_files
        self.max_size = max_size
        self.max_age_ms = int(max_age * 1000) if max_age else None
        self.concurrency = concurrency
        self._clock = clock
        self._cycle_lock = threading.Lock()
        self.last_run = 0

    @property
    def enabled(self) -> bool:
        return bool(self.max_files or self.max_size or self.max_age_ms)

    def needs_eviction(self, now: Optional[int] = None) -> bool:
        """Cheap check of the aggregates against the limits."""
        if now is None:
            now = self._clock()
        aggregate = self.store.aggregate()
        if self.max_files and aggregate.file_count > self.max_files:
            return True
        if self.max_size and aggregate.used_space > self.max_size:
            return True
        if self.max_age_ms and now - aggregate.oldest_access_time > self.max_age_ms:
            return True
        return False

    def plan(
        self, now: Optional[int] = None
    ) -> Tuple[List[CacheEntry], List[CacheEntry]]:
        """Select (kept, victims) from the current index without deleting anything."""
        if now is None:
            now = self._clock()
        return select_victims(
            self.store.entries(),
            now,
            max_files=self.max_files,
            max_size=self.max_size,
            max_age_ms=self.max_age_ms,
        )

    def run(self, now: Optional[int] = None) -> EvictionResult:
        """Run one eviction cycle.

        Returns:
            EvictionResult (falsy if nothing was selected)
        """
        with self._cycle_lock:
            if now is None:
                now = self._clock()
            self.last_run = now

            _, victims = self.plan(now)
            if not victims:
                # The pre-check may have fired on a stale oldest bound
                self.store.recompute_oldest()
                logger.debug("Nothing to clean up")
                return EvictionResult()

            failed = set(unlink_paths([v.path for v in victims], self.concurrency))
            if failed:
                logger.warning(f"Cleanup: failed to remove {len(failed)} files")

            removed = [v for v in victims if v.path not in failed]
            # Failed paths are simply left in the store, with their sizes
            self.store.discard(v.path for v in removed)

            result = EvictionResult(
                removed=[v.path for v in removed],
                failed=sorted(failed),
                freed_bytes=sum(v.size for v in removed),
            )
            logger.info(
                f"Cleanup: removed {len(result.removed)} files, "
                f"freed {format_size(result.freed_bytes)} of space"
            )
            return result
