"""
Memoized candle series keyed by the bucket that contains "now".

The key of every entry embeds the aligned start of the current bucket of the
requested period. While "now" stays inside that bucket, repeated requests
return the identical Series object. Once time crosses into the next bucket the
key changes, the lookup misses and the series is rebuilt, which also turns the
previously active candle into a completed one. No dirty flags are tracked for
the passage of time.

Data mutations are a different matter: they go through ``invalidate`` (one
entity) or ``invalidate_all`` (bulk changes such as an import).
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from collections.abc import Callable
from typing import Any, NamedTuple

from core.clock import Clock, get_clock
from core.entities import Entity, Series
from core.periods import Period, PeriodCatalogue

from .builder import CandleBuilder

__all__ = ["CacheKey", "IntervalCache", "IntervalCacheMetrics", "EntityResolver"]

logger = logging.getLogger(__name__)

# Maps an entity id (or the aggregate id) to the entity to chart
EntityResolver = Callable[[str], Entity | None]


class CacheKey(NamedTuple):
    entity_id: str
    period: str
    bucket_start_ms: int

    def __str__(self) -> str:
        return f"{self.entity_id}|{self.period}|{self.bucket_start_ms}"


class IntervalCacheMetrics:
    """Counters for cache behaviour."""

    def __init__(self) -> None:
        self.reset()

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.no_data = 0
        self.evictions = 0
        self.invalidations = 0

    @property
    def hit_rate(self) -> float:
        lookups = self.hits + self.misses
        return self.hits / lookups if lookups else 0.0

    def as_dict(self) -> dict[str, float]:
        return {
            "interval_cache_hits_total": float(self.hits),
            "interval_cache_misses_total": float(self.misses),
            "interval_cache_no_data_total": float(self.no_data),
            "interval_cache_evictions_total": float(self.evictions),
            "interval_cache_invalidations_total": float(self.invalidations),
            "interval_cache_hit_rate": self.hit_rate,
        }


class IntervalCache:
    """Series cache that invalidates itself as time advances.

    Args:
        resolver: Returns the entity for an id, or None if there is nothing to
            chart.
        builder: Candle builder (defaults to one sharing this cache's clock).
        clock: Time source (defaults to the global clock).
        max_entries: Upper bound on stored series. Least recently used
            entries are evicted first, which drops stale past-bucket keys.

    Example:
        >>> cache = IntervalCache(store.get_entity)
        >>> first = cache.get_or_compute("7", "1m")
        >>> first is cache.get_or_compute("7", "1m")  # same bucket
        True
    """

    def __init__(
        self,
        resolver: EntityResolver,
        builder: CandleBuilder | None = None,
        clock: Clock | None = None,
        max_entries: int = 512,
    ):
        if max_entries <= 0:
            raise ValueError("max_entries must be positive")

        self._resolver = resolver
        self._clock = clock
        self.builder = builder or CandleBuilder(clock=clock)
        self.max_entries = max_entries
        self.metrics = IntervalCacheMetrics()
        self._entries: OrderedDict[CacheKey, Series] = OrderedDict()

    def _now_ms(self) -> int:
        return (self._clock or get_clock()).now_ms()

    def cache_key(
        self, entity_id: str, period: str | Period, now_ms: int | None = None
    ) -> CacheKey | None:
        """Key for ``(entity_id, period)`` at ``now_ms``; None for unknown periods."""
        resolved = PeriodCatalogue.resolve(period)
        if resolved is None:
            return None
        if now_ms is None:
            now_ms = self._now_ms()
        return CacheKey(entity_id, resolved.code, resolved.bucket_start_ms(now_ms))

    def get_or_compute(self, entity_id: str, period: str | Period) -> Series | None:
        """Return the cached series for the current bucket, building it on a miss.

        Returns:
            The series, or None when the period is unknown or the entity has
            no events. "No data" results are not cached.
        """
        now_ms = self._now_ms()
        key = self.cache_key(entity_id, period, now_ms)
        if key is None:
            self.metrics.no_data += 1
            return None

        cached = self._entries.get(key)
        if cached is not None:
            self._entries.move_to_end(key)
            self.metrics.hits += 1
            logger.debug(f"Cache HIT: {key}")
            return cached

        self.metrics.misses += 1
        logger.debug(f"Cache MISS: {key}")

        entity = self._resolver(entity_id)
        series = (
            self.builder.build_for_entity(entity, key.period, now_ms=now_ms)
            if entity is not None
            else None
        )
        if series is None:
            self.metrics.no_data += 1
            return None

        self._store(key, series)
        return series

    def _store(self, key: CacheKey, series: Series) -> None:
        self._entries[key] = series
        self._entries.move_to_end(key)
        while len(self._entries) > self.max_entries:
            evicted, _ = self._entries.popitem(last=False)
            self.metrics.evictions += 1
            logger.debug(f"Cache EVICT: {evicted}")

    def invalidate(self, entity_id: str) -> int:
        """Drop every entry for one entity. Returns the number of entries removed."""
        stale = [key for key in self._entries if key.entity_id == entity_id]
        for key in stale:
            del self._entries[key]
        if stale:
            self.metrics.invalidations += 1
            logger.debug(f"Invalidated {len(stale)} entries for entity {entity_id!r}")
        return len(stale)

    def invalidate_all(self) -> None:
        """Clear the whole cache (bulk data changes)."""
        count = len(self._entries)
        self._entries.clear()
        self.metrics.invalidations += 1
        logger.info(f"Cache cleared ({count} entries)")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def get_cache_stats(self) -> dict[str, Any]:
        return {
            "entries": len(self._entries),
            "max_entries": self.max_entries,
            "builds": self.builder.builds,
            **self.metrics.as_dict(),
        }
