"""
Candle charting engine for scored directions.

This package turns append-only score events into OHLC candle series, memoizes
them per time bucket, merges every direction into an aggregate series, and
keeps an independent zoom/pan viewport for each chart.
"""

from .aggregate import (
    AGGREGATE_ID,
    AGGREGATE_NAME,
    Breakdown,
    SourceContribution,
    breakdown_by_source,
    merge_all,
)
from .annotations import CommentBook, CommentLookup, annotate_window, candle_key
from .builder import CandleBuilder, sort_events
from .engine import ChartEngine, ChartName, ChartSession, EntityStore, MutableEntityStore
from .interval_cache import CacheKey, IntervalCache, IntervalCacheMetrics
from .scheduler import RefreshScheduler
from .viewport import (
    NavDirection,
    ViewportController,
    ZoomConfig,
    ZoomState,
    compute_window,
)

__all__ = [
    # Building
    "CandleBuilder",
    "sort_events",
    # Aggregate
    "AGGREGATE_ID",
    "AGGREGATE_NAME",
    "Breakdown",
    "SourceContribution",
    "breakdown_by_source",
    "merge_all",
    # Cache
    "CacheKey",
    "IntervalCache",
    "IntervalCacheMetrics",
    # Viewport
    "NavDirection",
    "ViewportController",
    "ZoomConfig",
    "ZoomState",
    "compute_window",
    # Annotations
    "CommentBook",
    "CommentLookup",
    "annotate_window",
    "candle_key",
    # Refresh and facade
    "RefreshScheduler",
    "ChartEngine",
    "ChartName",
    "ChartSession",
    "EntityStore",
    "MutableEntityStore",
]
