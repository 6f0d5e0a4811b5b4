"""Tests for the in-memory metadata store."""

import math

import pytest

from filecache.store import CacheEntry, MetadataStore


@pytest.fixture
def store():
    """Store with three entries."""
    s = MetadataStore()
    s.upsert("/c/a", 100, 1000)
    s.upsert("/c/b", 200, 2000)
    s.upsert("/c/c", 300, 3000)
    return s


def assert_consistent(store):
    """Aggregates must match the entry set."""
    entries = store.entries()
    aggregate = store.aggregate()
    assert aggregate.used_space == sum(e.size for e in entries)
    assert aggregate.file_count == len(entries)
    if entries:
        assert aggregate.oldest_access_time <= min(e.last_access_time for e in entries)
    else:
        assert aggregate.oldest_access_time == math.inf


class TestMetadataStore:
    """Test store mutations and aggregates."""

    def test_empty(self):
        store = MetadataStore()
        aggregate = store.aggregate()
        assert aggregate.used_space == 0
        assert aggregate.file_count == 0
        assert aggregate.oldest_access_time == math.inf

    def test_upsert_new(self, store):
        aggregate = store.aggregate()
        assert aggregate.used_space == 600
        assert aggregate.file_count == 3
        assert aggregate.oldest_access_time == 1000
        assert "/c/a" in store
        assert len(store) == 3

    def test_upsert_existing_does_not_double_count(self, store):
        """Test replacing an entry subtracts the old size first."""
        store.upsert("/c/a", 50, 4000)
        aggregate = store.aggregate()
        assert aggregate.used_space == 550
        assert aggregate.file_count == 3
        assert store.get("/c/a").size == 50
        assert_consistent(store)

    def test_upsert_tightens_oldest(self, store):
        store.upsert("/c/d", 1, 500)
        assert store.aggregate().oldest_access_time == 500

    def test_touch(self, store):
        assert store.touch("/c/a", 9000) is True
        assert store.get("/c/a").last_access_time == 9000
        assert_consistent(store)

    def test_touch_absent_is_noop(self, store):
        assert store.touch("/c/missing", 9000) is False
        assert store.aggregate().file_count == 3

    def test_remove(self, store):
        removed = store.remove("/c/b")
        assert removed == CacheEntry("/c/b", 200, 2000)
        assert store.aggregate().used_space == 400
        assert store.aggregate().file_count == 2
        assert_consistent(store)

    def test_remove_absent_is_noop(self, store):
        assert store.remove("/c/missing") is None
        assert store.remove("/c/a") is not None
        assert store.remove("/c/a") is None
        assert store.aggregate().file_count == 2

    def test_discard_recomputes_oldest(self, store):
        assert store.discard(["/c/a", "/c/missing"]) == 1
        aggregate = store.aggregate()
        assert aggregate.oldest_access_time == 2000
        assert aggregate.used_space == 500
        assert_consistent(store)

    def test_replace(self, store):
        store.replace([CacheEntry("/c/x", 10, 7000), CacheEntry("/c/y", 20, 6000)])
        aggregate = store.aggregate()
        assert aggregate.used_space == 30
        assert aggregate.file_count == 2
        assert aggregate.oldest_access_time == 6000
        assert "/c/a" not in store

    def test_clear(self, store):
        store.clear()
        assert_consistent(store)
        assert len(store) == 0

    def test_snapshot_is_a_copy(self, store):
        snap = store.snapshot()
        assert snap["/c/a"] == {"size": 100, "last_access_time": 1000}
        snap["/c/a"]["size"] = 0
        assert store.get("/c/a").size == 100

    def test_get_returns_copy(self, store):
        entry = store.get("/c/a")
        entry.size = 0
        assert store.get("/c/a").size == 100
        assert store.get("/c/missing") is None

    def test_mixed_sequence_stays_consistent(self):
        """Test aggregates after an arbitrary sequence of operations."""
        store = MetadataStore()
        for i in range(20):
            store.upsert(f"/c/{i % 7}", i * 10, 1000 + i)
            if i % 3 == 0:
                store.remove(f"/c/{(i + 1) % 7}")
            if i % 5 == 0:
                store.touch(f"/c/{i % 7}", 5000 + i)
        store.discard(["/c/0", "/c/1"])
        assert_consistent(store)
