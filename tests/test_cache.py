"""
Unit tests for the result cache.

Tests TTL expiry, LRU eviction, the confidence threshold and persistence
snapshots.
"""

from datetime import datetime, timedelta

import pytest

from insight_router.core.cache import CacheStore
from insight_router.storage.models import CacheEntry


class FakeClock:
    """Manually advanced clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class TestCacheStore:
    """Test CacheStore get/put semantics."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 3, 1, 8, 0))
        self.cache = CacheStore(clock=self.clock)

    def test_put_then_get(self):
        assert self.cache.put("fp1", {"category": "Dining"}, 0.9) is True

        entry = self.cache.get("fp1")
        assert entry is not None
        assert entry.result == {"category": "Dining"}
        assert entry.expires_at == entry.created_at + timedelta(hours=24)

    def test_miss(self):
        assert self.cache.get("unknown") is None
        assert self.cache.stats().misses == 1

    def test_low_confidence_not_cached(self):
        """Cached iff confidence >= 0.7."""
        assert self.cache.put("low", "result", 0.69) is False
        assert self.cache.put("edge", "result", 0.7) is True
        assert "low" not in self.cache
        assert "edge" in self.cache

    def test_ttl_expiry(self):
        self.cache.put("fp1", "result", 0.9)

        self.clock.advance(hours=23, minutes=59)
        assert self.cache.get("fp1") is not None

        self.clock.advance(minutes=1)
        assert self.cache.get("fp1") is None
        # Expired entries are removed on read
        assert len(self.cache) == 0

    def test_put_refreshes_existing_entry(self):
        self.cache.put("fp1", "old", 0.9)
        self.clock.advance(hours=20)
        self.cache.put("fp1", "new", 0.8)
        self.clock.advance(hours=10)

        entry = self.cache.get("fp1")
        assert entry.result == "new"
        assert len(self.cache) == 1

    def test_invalidate(self):
        self.cache.put("fp1", "result", 0.9)
        assert self.cache.invalidate("fp1") is True
        assert self.cache.invalidate("fp1") is False
        assert self.cache.get("fp1") is None

    def test_invalidate_matching(self):
        self.cache.put("a", {"signature": "UBER"}, 0.9)
        self.cache.put("b", {"signature": "LYFT"}, 0.9)
        self.cache.put("c", {"signature": "UBER"}, 0.9)

        dropped = self.cache.invalidate_matching(lambda e: e.result["signature"] == "UBER")

        assert dropped == 2
        assert "b" in self.cache
        assert len(self.cache) == 1

    def test_clear_resets_stats(self):
        self.cache.put("fp1", "result", 0.9)
        self.cache.get("fp1")
        self.cache.clear()

        stats = self.cache.stats()
        assert (stats.size, stats.hits, stats.misses, stats.evictions) == (0, 0, 0, 0)

    def test_stats_hit_rate(self):
        self.cache.put("fp1", "result", 0.9)
        self.cache.get("fp1")
        self.cache.get("fp1")
        self.cache.get("missing")

        stats = self.cache.stats()
        assert stats.hits == 2
        assert stats.misses == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_unreadable_entry_is_a_miss(self):
        """A corrupted entry never raises out of get."""
        self.cache._entries["broken"] = object()

        assert self.cache.get("broken") is None
        assert "broken" not in self.cache


class TestCacheEviction:
    """Test capacity bound and LRU order."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 3, 1, 8, 0))

    def test_capacity_bound(self):
        cache = CacheStore(max_entries=1000, clock=self.clock)
        for i in range(1000):
            cache.put(f"fp{i}", i, 0.9)
        assert len(cache) == 1000

        cache.put("fp1000", 1000, 0.9)

        assert len(cache) == 1000
        assert cache.stats().evictions == 1
        assert "fp0" not in cache
        assert "fp1000" in cache

    def test_get_refreshes_recency(self):
        cache = CacheStore(max_entries=3, clock=self.clock)
        cache.put("a", 1, 0.9)
        cache.put("b", 2, 0.9)
        cache.put("c", 3, 0.9)

        cache.get("a")
        cache.put("d", 4, 0.9)

        assert "a" in cache
        assert "b" not in cache

    def test_stale_entries_purged_before_eviction(self):
        cache = CacheStore(max_entries=2, clock=self.clock)
        cache.put("old", 1, 0.9)
        self.clock.advance(hours=20)
        cache.put("fresh", 2, 0.9)
        self.clock.advance(hours=5)

        cache.put("new", 3, 0.9)

        assert "fresh" in cache
        assert "new" in cache
        assert cache.stats().evictions == 0


class TestCacheSnapshot:
    """Test snapshot and load."""

    def setup_method(self):
        self.clock = FakeClock(datetime(2024, 3, 1, 8, 0))

    def _entry(self, fingerprint, confidence=0.9, age_hours=0):
        created = self.clock.now - timedelta(hours=age_hours)
        return CacheEntry(fingerprint, fingerprint.upper(), confidence, created, created + timedelta(hours=24))

    def test_snapshot_in_lru_order(self):
        cache = CacheStore(clock=self.clock)
        cache.put("a", 1, 0.9)
        cache.put("b", 2, 0.9)
        cache.get("a")

        assert [e.fingerprint for e in cache.snapshot()] == ["b", "a"]

    def test_load_skips_expired_and_low_confidence(self):
        cache = CacheStore(clock=self.clock)
        loaded = cache.load([
            self._entry("fresh"),
            self._entry("stale", age_hours=25),
            self._entry("weak", confidence=0.5),
        ])

        assert loaded == 1
        assert "fresh" in cache
        assert "stale" not in cache
        assert "weak" not in cache

    def test_load_respects_capacity(self):
        cache = CacheStore(max_entries=2, clock=self.clock)
        cache.load([self._entry("a"), self._entry("b"), self._entry("c")])

        assert len(cache) == 2
        assert "a" not in cache

    def test_load_skips_malformed(self):
        cache = CacheStore(clock=self.clock)
        assert cache.load([object(), self._entry("ok")]) == 1

    def test_snapshot_skips_unreadable_entry(self):
        cache = CacheStore(clock=self.clock)
        cache.put("good", 1, 0.9)
        cache._entries["broken"] = object()

        assert [e.fingerprint for e in cache.snapshot()] == ["good"]


class TestCacheConstruction:

    def test_rejects_non_positive_ttl(self):
        with pytest.raises(ValueError, match="ttl must be positive"):
            CacheStore(ttl=timedelta(0))

    def test_rejects_non_positive_capacity(self):
        with pytest.raises(ValueError, match="max_entries must be > 0"):
            CacheStore(max_entries=0)
