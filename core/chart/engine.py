"""
Chart engine facade.

Wires the pieces together for the two charts of the application:

    EntityStore ─┬─> entity ───────────┐
                 └─> merge_all ─> aggregate ─┴─> IntervalCache ─> Viewport ─> ViewWindow

The primary chart shows one direction; the aggregate chart shows the sum of
all directions. Each chart has its own ViewportController, so zooming one
never moves the other. Both share the IntervalCache.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Protocol

from core.clock import Clock, get_clock
from core.entities import Candle, Entity, ScoreEvent, Series, ViewWindow
from core.periods import IntervalInfo, Period, PeriodCatalogue
from core.utils import format_countdown

from .aggregate import AGGREGATE_ID, Breakdown, breakdown_by_source, merge_all
from .annotations import CommentLookup, annotate_window
from .interval_cache import IntervalCache
from .scheduler import RefreshScheduler
from .viewport import ViewportController, ZoomConfig

__all__ = [
    "ChartEngine",
    "ChartName",
    "ChartSession",
    "EntityStore",
    "MutableEntityStore",
]


class EntityStore(Protocol):
    """Read access to directions, owned outside the engine."""

    def list_live_entities(self) -> list[Entity]: ...

    def list_soft_deleted_entities(self) -> list[Entity]: ...


class MutableEntityStore(EntityStore, Protocol):
    """Store that also accepts new events and value resets."""

    def append_event(self, entity_id: str, event: ScoreEvent) -> bool: ...

    def clear_events(self, entity_id: str | None = None) -> None: ...


class ChartName(Enum):
    PRIMARY = "primary"
    AGGREGATE = "aggregate"


@dataclass
class ChartSession:
    """One chart: its viewport and what it currently shows."""

    name: ChartName
    viewport: ViewportController
    entity_id: str | None = None
    period: str | None = None

    @property
    def is_selected(self) -> bool:
        return self.entity_id is not None and self.period is not None


WindowListener = Callable[[ChartName, ViewWindow | None], None]


class ChartEngine:
    """Candle engine for a primary chart and an aggregate chart.

    Args:
        store: Entity collaborator (live and soft-deleted directions).
        zoom_config: Viewport configuration for the primary chart.
        aggregate_zoom_config: Viewport configuration for the aggregate chart
            (defaults to the primary one).
        comments: Optional comment collaborator used to flag annotated candles.
        on_mutated: Called after every data change made through the engine.
        on_window: Called with each refreshed window after a bucket rollover.
        on_tick: Called on every scheduler tick with the current interval info.
        clock: Time source (defaults to the global clock).
        cache_max_entries: Bound on cached series.
        tick_interval_ms: Refresh scheduler period.
    """

    def __init__(
        self,
        store: EntityStore,
        zoom_config: ZoomConfig | None = None,
        aggregate_zoom_config: ZoomConfig | None = None,
        comments: CommentLookup | None = None,
        on_mutated: Callable[[], None] | None = None,
        on_window: WindowListener | None = None,
        on_tick: Callable[[IntervalInfo], None] | None = None,
        clock: Clock | None = None,
        cache_max_entries: int = 512,
        tick_interval_ms: int = 500,
    ):
        self.store = store
        self.comments = comments
        self.on_mutated = on_mutated
        self.on_window = on_window
        self.on_tick = on_tick
        self._clock = clock
        self.logger = logging.getLogger(self.__class__.__name__)

        zoom_config = zoom_config or ZoomConfig()
        self.cache = IntervalCache(
            self.resolve_entity, clock=clock, max_entries=cache_max_entries
        )
        self.primary = ChartSession(
            ChartName.PRIMARY, ViewportController(zoom_config, name="primary")
        )
        self.aggregate = ChartSession(
            ChartName.AGGREGATE,
            ViewportController(aggregate_zoom_config or zoom_config, name="aggregate"),
            entity_id=AGGREGATE_ID,
        )
        self.scheduler = RefreshScheduler(
            self._on_rollover,
            on_tick=self._on_tick,
            interval_ms=tick_interval_ms,
            clock=clock,
        )
        self.interval_info: IntervalInfo | None = None

    # ------------------------------------------------------------------
    # Data access
    # ------------------------------------------------------------------

    def resolve_entity(self, entity_id: str) -> Entity | None:
        """Entity to chart for an id; the aggregate id merges every direction."""
        if entity_id == AGGREGATE_ID:
            return merge_all(
                self.store.list_live_entities(),
                self.store.list_soft_deleted_entities(),
            )
        for entity in self.store.list_live_entities():
            if entity.id == entity_id:
                return entity
        return None

    def get_series(self, entity_id: str, period: str | Period) -> Series | None:
        return self.cache.get_or_compute(entity_id, period)

    def _session(self, chart: ChartName | str) -> ChartSession:
        chart = ChartName(chart)
        return self.primary if chart is ChartName.PRIMARY else self.aggregate

    def _session_for_entity(self, entity_id: str) -> ChartSession:
        return self.aggregate if entity_id == AGGREGATE_ID else self.primary

    def _total(self, session: ChartSession) -> int:
        if not session.is_selected:
            return 0
        series = self.get_series(session.entity_id, session.period)
        return len(series) if series is not None else 0

    def get_view_window(
        self, entity_id: str, period: str | Period
    ) -> ViewWindow | None:
        """Visible candles for ``entity_id`` at ``period``.

        The aggregate id uses the aggregate chart's viewport, any other id the
        primary chart's. Returns None when there is nothing to draw.
        """
        series = self.get_series(entity_id, period)
        if series is None or len(series) == 0:
            return None

        session = self._session_for_entity(entity_id)
        window = session.viewport.window(series)
        if self.comments is not None:
            window = annotate_window(window, entity_id, series.period, self.comments)
        return window

    def select(self, entity_id: str | None, period: str | Period) -> None:
        """Choose what the primary chart shows; both charts use ``period``.

        Switching replaces the refresh tick so only one timer drives the charts.
        """
        resolved = PeriodCatalogue.resolve(period)
        code = resolved.code if resolved is not None else str(period)
        self.primary.entity_id = entity_id
        self.primary.period = code
        self.aggregate.period = code
        self.scheduler.reconfigure(resolved)

    def breakdown(self, candle: Candle) -> Breakdown | None:
        """Per-direction contributions to an aggregate candle."""
        aggregate = self.resolve_entity(AGGREGATE_ID)
        if aggregate is None:
            return None
        return breakdown_by_source(aggregate, candle)

    # ------------------------------------------------------------------
    # Viewport operations
    # ------------------------------------------------------------------

    def zoom_in(self, chart: ChartName | str = ChartName.PRIMARY) -> None:
        session = self._session(chart)
        session.viewport.zoom_in(self._total(session))

    def zoom_out(self, chart: ChartName | str = ChartName.PRIMARY) -> None:
        session = self._session(chart)
        session.viewport.zoom_out(self._total(session))

    def reset_zoom(
        self, count: int | None = None, chart: ChartName | str = ChartName.PRIMARY
    ) -> None:
        self._session(chart).viewport.reset_zoom(count)

    def set_visible_count(
        self, count: int, chart: ChartName | str = ChartName.PRIMARY
    ) -> None:
        session = self._session(chart)
        session.viewport.set_visible_count(count, self._total(session))

    def pan(
        self, delta_pixels: float, chart: ChartName | str = ChartName.PRIMARY
    ) -> None:
        session = self._session(chart)
        session.viewport.pan(delta_pixels, self._total(session))

    def focus(self, position: float, chart: ChartName | str = ChartName.PRIMARY) -> None:
        session = self._session(chart)
        session.viewport.focus(position, self._total(session))

    def navigate_left(
        self, step: int | None = None, chart: ChartName | str = ChartName.PRIMARY
    ) -> None:
        session = self._session(chart)
        session.viewport.navigate_left(self._total(session), step)

    def navigate_right(
        self, step: int | None = None, chart: ChartName | str = ChartName.PRIMARY
    ) -> None:
        session = self._session(chart)
        session.viewport.navigate_right(self._total(session), step)

    def navigate_to_end(self, chart: ChartName | str = ChartName.PRIMARY) -> None:
        self._session(chart).viewport.navigate_to_end()

    def navigate_to_start(self, chart: ChartName | str = ChartName.PRIMARY) -> None:
        self._session(chart).viewport.navigate_to_start()

    def invalidate_all(self) -> None:
        self.cache.invalidate_all()

    # ------------------------------------------------------------------
    # Refresh
    # ------------------------------------------------------------------

    def refresh(self) -> dict[ChartName, ViewWindow | None]:
        """Recompute both charts, re-enter auto-follow where appropriate, re-window.

        The series is fetched (rebuilt on a new bucket) before the viewport
        reads its length.
        """
        windows: dict[ChartName, ViewWindow | None] = {}
        for session in (self.primary, self.aggregate):
            if not session.is_selected:
                continue
            series = self.get_series(session.entity_id, session.period)
            if series is None or len(series) == 0:
                window = None
            else:
                session.viewport.check_and_follow(len(series))
                window = self.get_view_window(session.entity_id, session.period)
            windows[session.name] = window
            if self.on_window is not None:
                self.on_window(session.name, window)
        return windows

    def _on_rollover(self, info: IntervalInfo) -> None:
        self.refresh()

    def _on_tick(self, info: IntervalInfo) -> None:
        self.interval_info = info
        if self.on_tick is not None:
            self.on_tick(info)

    def countdown_label(self) -> str | None:
        """``"<period label> • closes in: MM:SS"`` for the watched period."""
        info = self.interval_info
        if info is None:
            return None
        now_ms = (self._clock or get_clock()).now_ms()
        return f"{info.period.label} • closes in: {format_countdown(info.end_ms - now_ms)}"

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def _require_mutable(self) -> MutableEntityStore:
        store = self.store
        if not hasattr(store, "append_event") or not hasattr(store, "clear_events"):
            raise TypeError(f"{type(store).__name__} does not accept mutations")
        return store  # type: ignore[return-value]

    def _notify_mutated(self) -> None:
        if self.on_mutated is not None:
            self.on_mutated()

    def record_score(
        self, entity_id: str, value: float, at: datetime | None = None
    ) -> bool:
        """Append a score to a live direction.

        Returns:
            False when the value is zero or not finite, or the direction does
            not exist; True once the event was stored.
        """
        if not math.isfinite(value) or value == 0:
            return False

        event = ScoreEvent(
            value=value, occurred_at=at or (self._clock or get_clock()).now()
        )
        if not self._require_mutable().append_event(entity_id, event):
            return False

        self.cache.invalidate(entity_id)
        self.cache.invalidate(AGGREGATE_ID)
        self.logger.info(f"Recorded {value:+g} for direction {entity_id!r}")
        self._notify_mutated()
        return True

    def clear_values(self) -> None:
        """Remove the events of every direction."""
        self._require_mutable().clear_events(None)
        self.cache.invalidate_all()
        self._notify_mutated()

    def clear_entity_values(self, entity_id: str) -> None:
        self._require_mutable().clear_events(entity_id)
        self.cache.invalidate(entity_id)
        self.cache.invalidate(AGGREGATE_ID)
        self._notify_mutated()
