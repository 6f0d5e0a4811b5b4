"""Tests for the eviction engine."""

import os

import pytest

from filecache import scanner
from filecache.eviction import EvictionEngine, select_victims
from filecache.store import CacheEntry, MetadataStore

NOW = 1_000_000


def entry(name, size, age):
    """Entry last accessed ``age`` ms before NOW."""
    return CacheEntry(f"/c/{name}", size, NOW - age)


class TestSelectVictims:
    """Test the pure victim selection."""

    def test_no_limits_keeps_everything(self):
        entries = [entry("a", 1, 10), entry("b", 1, 20)]
        kept, victims = select_victims(entries, NOW)
        assert victims == []
        assert len(kept) == 2

    def test_max_files_evicts_oldest_regardless_of_size(self):
        """Test ages [5,4,3,2,1] with max_files=3 drop the two oldest."""
        entries = [
            entry("e1", 1, 5000),
            entry("e2", 10_000, 4000),
            entry("e3", 5, 3000),
            entry("e4", 1, 2000),
            entry("e5", 99_999, 1000),
        ]
        kept, victims = select_victims(entries, NOW, max_files=3)
        assert [v.path for v in victims] == ["/c/e1", "/c/e2"]
        assert [k.path for k in kept] == ["/c/e3", "/c/e4", "/c/e5"]

    def test_max_size_evicts_oldest_until_fits(self):
        entries = [entry("a", 40, 300), entry("b", 40, 200), entry("c", 40, 100)]
        kept, victims = select_victims(entries, NOW, max_size=80)
        assert [v.path for v in victims] == ["/c/a"]
        assert sum(k.size for k in kept) == 80

    def test_max_size_single_oversized_entry(self):
        kept, victims = select_victims([entry("big", 500, 10)], NOW, max_size=100)
        assert kept == []
        assert len(victims) == 1

    def test_max_age_is_strict(self):
        entries = [entry("old", 1, 1001), entry("edge", 1, 1000), entry("new", 1, 10)]
        kept, victims = select_victims(entries, NOW, max_age_ms=1000)
        assert [v.path for v in victims] == ["/c/old"]
        assert {k.path for k in kept} == {"/c/edge", "/c/new"}

    def test_age_applies_even_when_other_limits_hold(self):
        """Test stale small files go even if size and count are satisfied."""
        entries = [entry("stale", 1, 10_000), entry("big", 1_000, 1)]
        kept, victims = select_victims(
            entries, NOW, max_files=10, max_size=10_000, max_age_ms=5000
        )
        assert [v.path for v in victims] == ["/c/stale"]
        assert [k.path for k in kept] == ["/c/big"]

    def test_combined_count_and_size(self):
        entries = [entry(n, 10, age) for n, age in [("a", 5), ("b", 4), ("c", 3), ("d", 2)]]
        kept, victims = select_victims(entries, NOW, max_files=3, max_size=15)
        assert [v.path for v in victims] == ["/c/a", "/c/b", "/c/c"]
        assert [k.path for k in kept] == ["/c/d"]

    def test_ties_broken_by_path(self):
        entries = [entry("b", 1, 100), entry("a", 1, 100), entry("c", 1, 100)]
        _, victims = select_victims(entries, NOW, max_files=1)
        assert [v.path for v in victims] == ["/c/a", "/c/b"]


@pytest.fixture
def populated(tmp_path):
    """Store mirroring five real files with ages 5..1 seconds."""
    store = MetadataStore()
    for i, age in enumerate([5000, 4000, 3000, 2000, 1000], start=1):
        path = tmp_path / f"f{i}"
        path.write_bytes(b"x" * (i * 10))
        store.upsert(str(path), i * 10, NOW - age)
    return store, tmp_path


class TestEvictionEngine:
    """Test eviction cycles against real files."""

    def test_disabled_engine(self, populated):
        store, _ = populated
        engine = EvictionEngine(store, clock=lambda: NOW)
        assert engine.enabled is False
        assert engine.needs_eviction() is False
        assert not engine.run()

    def test_needs_eviction(self, populated):
        store, _ = populated
        assert EvictionEngine(store, max_files=4, clock=lambda: NOW).needs_eviction()
        assert not EvictionEngine(store, max_files=5, clock=lambda: NOW).needs_eviction()
        assert EvictionEngine(store, max_size=149, clock=lambda: NOW).needs_eviction()
        assert EvictionEngine(store, max_age=4, clock=lambda: NOW).needs_eviction()
        assert not EvictionEngine(store, max_age=6, clock=lambda: NOW).needs_eviction()

    def test_run_removes_files_and_entries(self, populated):
        store, root = populated
        engine = EvictionEngine(store, max_files=3, clock=lambda: NOW)
        result = engine.run()

        assert result.removed == [str(root / "f1"), str(root / "f2")]
        assert result.failed == []
        assert result.freed_bytes == 30
        assert not (root / "f1").exists()
        assert not (root / "f2").exists()
        assert (root / "f3").exists()

        aggregate = store.aggregate()
        assert aggregate.file_count == 3
        assert aggregate.used_space == 30 + 40 + 50
        assert aggregate.oldest_access_time == NOW - 3000
        assert engine.last_run == NOW

    def test_nothing_to_do_performs_no_io(self, populated, monkeypatch):
        store, _ = populated

        def boom(*args, **kwargs):
            raise AssertionError("unlink should not be called")

        monkeypatch.setattr("filecache.eviction.unlink_paths", boom)
        result = EvictionEngine(store, max_files=10, clock=lambda: NOW).run()
        assert not result

    def test_failed_unlink_is_reinstated(self, populated, monkeypatch):
        """Test a failed deletion keeps its size counted."""
        store, root = populated
        blocked = str(root / "f1")
        real_unlink = os.unlink

        def failing_unlink(path, *args, **kwargs):
            if str(path) == blocked:
                raise PermissionError("busy")
            return real_unlink(path, *args, **kwargs)

        monkeypatch.setattr(scanner.os, "unlink", failing_unlink)
        result = EvictionEngine(store, max_files=3, clock=lambda: NOW).run()

        assert result.failed == [blocked]
        assert result.removed == [str(root / "f2")]
        assert blocked in store
        aggregate = store.aggregate()
        assert aggregate.file_count == 4
        assert aggregate.used_space == 10 + 30 + 40 + 50
        assert aggregate.oldest_access_time == NOW - 5000

    def test_file_already_gone_counts_as_removed(self, populated):
        store, root = populated
        (root / "f1").unlink()
        result = EvictionEngine(store, max_files=4, clock=lambda: NOW).run()
        assert result.removed == [str(root / "f1")]
        assert result.failed == []
        assert str(root / "f1") not in store

    def test_age_eviction(self, populated):
        store, root = populated
        result = EvictionEngine(store, max_age=3.5, clock=lambda: NOW).run()
        assert sorted(result.removed) == [str(root / "f1"), str(root / "f2")]
        assert store.aggregate().file_count == 3

    def test_plan_does_not_delete(self, populated):
        store, root = populated
        kept, victims = EvictionEngine(store, max_files=1, clock=lambda: NOW).plan()
        assert len(victims) == 4
        assert len(kept) == 1
        assert all((root / f"f{i}").exists() for i in range(1, 6))
        assert store.aggregate().file_count == 5

    def test_stale_oldest_bound_refreshed(self, populated):
        """Test an empty cycle tightens the oldest access time."""
        store, root = populated
        store.touch(str(root / "f1"), NOW)
        engine = EvictionEngine(store, max_age=4.5, clock=lambda: NOW)
        assert engine.needs_eviction()

        result = engine.run()
        assert not result
        assert store.aggregate().oldest_access_time == NOW - 4000
        assert not engine.needs_eviction()
