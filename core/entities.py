from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from core.clock import to_epoch_ms
from core.periods import Period

__all__ = ["ScoreEvent", "Entity", "Candle", "Series", "ViewWindow"]


@dataclass(frozen=True, slots=True)
class ScoreEvent:
    value: float
    occurred_at: datetime
    metadata: Mapping[str, Any] | None = None
    # Set only on events copied into the aggregate entity
    source_id: str | None = None
    source_name: str | None = None

    @property
    def occurred_ms(self) -> int:
        return to_epoch_ms(self.occurred_at)


@dataclass(slots=True)
class Entity:
    """A scored direction (or the synthetic aggregate).

    Events are append-only and may arrive out of chronological order; the
    candle builder re-sorts them.
    """

    id: str
    name: str
    events: list[ScoreEvent] = field(default_factory=list)
    created_at: datetime | None = None
    attributes: dict[str, Any] = field(default_factory=dict)

    @property
    def total(self) -> float:
        return sum(event.value for event in self.events)


@dataclass(frozen=True, slots=True)
class Candle:
    period_start: datetime
    period_end: datetime
    open: float
    high: float
    low: float
    close: float
    event_count: int
    is_active: bool
    display_at: datetime

    @property
    def is_empty(self) -> bool:
        return self.event_count == 0

    @property
    def is_completed(self) -> bool:
        return not self.is_active

    @property
    def total_change(self) -> float:
        return self.close - self.open


@dataclass(frozen=True, slots=True)
class Series:
    """Candles for one (entity, period) pair, oldest first."""

    entity_id: str
    entity_name: str
    period: Period
    candles: tuple[Candle, ...]
    interval_ms: int | None

    def __len__(self) -> int:
        return len(self.candles)

    def __iter__(self) -> Iterator[Candle]:
        return iter(self.candles)

    def __getitem__(self, index: int) -> Candle:
        return self.candles[index]

    @property
    def active_candle(self) -> Candle | None:
        for candle in reversed(self.candles):
            if candle.is_active:
                return candle
        return None


@dataclass(frozen=True, slots=True)
class ViewWindow:
    """Bounded, contiguous slice of a series handed to the renderer."""

    candles: tuple[Candle, ...]
    start_index: int
    end_index: int
    total_candles: int
    visible_count: int
    annotated: tuple[bool, ...] = ()

    @property
    def is_partial(self) -> bool:
        """True when the window hides part of the series."""
        return self.visible_count < self.total_candles or self.start_index > 0

    def position_label(self) -> str:
        return (
            f"Candles {self.start_index + 1}-{self.end_index + 1} of "
            f"{self.total_candles} • zoom: {self.visible_count}"
        )
