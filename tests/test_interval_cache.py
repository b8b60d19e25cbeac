"""
Unit tests for the bucket-keyed interval cache.

Tests cover:
- Identical series returned within one bucket
- Guaranteed miss and active-candle rollover on a new bucket
- No-data results are not cached
- Per-entity and full invalidation
- LRU eviction bound
"""

import pytest

from core.chart.interval_cache import CacheKey, IntervalCache
from core.clock import SimClock
from core.periods import DAY_MS, MINUTE_MS
from tests.fixtures import BASE_MS, create_entity


class TestIntervalCache:
    """Test suite for IntervalCache."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = SimClock(BASE_MS + 30_000)
        self.entities = {
            "a": create_entity("a", [(5, 0), (-2, 20)]),
            "b": create_entity("b", [(1, 10)]),
            "empty": create_entity("empty"),
        }
        self.resolved: list[str] = []
        self.cache = IntervalCache(self._resolve, clock=self.clock)

    def _resolve(self, entity_id):
        self.resolved.append(entity_id)
        return self.entities.get(entity_id)

    def test_same_bucket_returns_identical_series(self):
        first = self.cache.get_or_compute("a", "1m")
        self.clock.advance_ms(20_000)
        second = self.cache.get_or_compute("a", "1m")

        assert first is not None
        assert second is first
        assert self.cache.builder.builds == 1
        assert self.cache.metrics.hits == 1
        assert self.cache.metrics.misses == 1

    def test_new_bucket_forces_rebuild(self):
        """Crossing a boundary completes the old active candle and opens a new one."""
        first = self.cache.get_or_compute("a", "1m")
        assert first.candles[-1].is_active

        self.clock.set_ms(BASE_MS + MINUTE_MS)
        second = self.cache.get_or_compute("a", "1m")

        assert second is not first
        assert len(second) == len(first) + 1
        assert second.candles[0].period_start == first.candles[-1].period_start
        assert second.candles[0].is_completed
        assert second.candles[-1].is_active
        assert self.cache.builder.builds == 2

    def test_cache_key_embeds_aligned_bucket(self):
        key = self.cache.cache_key("a", "1m", BASE_MS + 59_999)

        assert key == CacheKey("a", "1m", BASE_MS)
        assert str(key) == f"a|1m|{BASE_MS}"
        assert self.cache.cache_key("a", "1m", BASE_MS + 60_000).bucket_start_ms == (
            BASE_MS + MINUTE_MS
        )

    def test_calendar_mode_keys_by_day(self):
        key = self.cache.cache_key("a", "all", BASE_MS + 5 * 3_600_000)
        assert key.bucket_start_ms == BASE_MS
        assert self.cache.cache_key("a", "all", BASE_MS + DAY_MS).bucket_start_ms == (
            BASE_MS + DAY_MS
        )

    def test_unknown_period(self):
        assert self.cache.cache_key("a", "2w") is None
        assert self.cache.get_or_compute("a", "2w") is None
        assert len(self.cache) == 0

    def test_no_data_is_not_cached(self):
        assert self.cache.get_or_compute("empty", "1m") is None
        assert self.cache.get_or_compute("missing", "1m") is None
        assert self.cache.get_or_compute("empty", "1m") is None

        assert len(self.cache) == 0
        assert self.resolved.count("empty") == 2
        assert self.cache.metrics.no_data == 3

    def test_periods_are_cached_separately(self):
        minute = self.cache.get_or_compute("a", "1m")
        hour = self.cache.get_or_compute("a", "1h")

        assert minute is not hour
        assert len(self.cache) == 2

    def test_invalidate_entity(self):
        self.cache.get_or_compute("a", "1m")
        self.cache.get_or_compute("a", "5m")
        kept = self.cache.get_or_compute("b", "1m")

        removed = self.cache.invalidate("a")

        assert removed == 2
        assert len(self.cache) == 1
        assert self.cache.get_or_compute("b", "1m") is kept

    def test_invalidate_sees_new_events(self):
        before = self.cache.get_or_compute("b", "1m")
        self.entities["b"].events.extend(create_entity("x", [(4, 25)]).events)

        assert self.cache.get_or_compute("b", "1m") is before
        self.cache.invalidate("b")
        after = self.cache.get_or_compute("b", "1m")

        assert after.candles[-1].close == 5

    def test_invalidate_all(self):
        self.cache.get_or_compute("a", "1m")
        self.cache.get_or_compute("b", "1m")

        self.cache.invalidate_all()

        assert len(self.cache) == 0
        assert self.cache.metrics.invalidations == 1

    def test_lru_eviction(self):
        cache = IntervalCache(self._resolve, clock=self.clock, max_entries=2)
        cache.get_or_compute("a", "1m")
        cache.get_or_compute("b", "1m")
        cache.get_or_compute("a", "1m")  # refresh a
        cache.get_or_compute("a", "1h")

        assert len(cache) == 2
        assert CacheKey("b", "1m", BASE_MS) not in cache
        assert CacheKey("a", "1m", BASE_MS) in cache
        assert cache.metrics.evictions == 1

    def test_invalid_max_entries(self):
        with pytest.raises(ValueError):
            IntervalCache(self._resolve, max_entries=0)

    def test_stats(self):
        self.cache.get_or_compute("a", "1m")
        self.cache.get_or_compute("a", "1m")

        stats = self.cache.get_cache_stats()

        assert stats["entries"] == 1
        assert stats["builds"] == 1
        assert stats["interval_cache_hits_total"] == 1.0
        assert stats["interval_cache_hit_rate"] == pytest.approx(0.5)
