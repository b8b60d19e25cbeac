"""
Aggregate view over every direction, including soft-deleted ones.

The aggregate chart shows the combined running total of all directions. A
soft-deleted direction still contributes its history, except when a live
direction with the same id exists (it was restored), so the same events are
never counted twice.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field, replace

from core.clock import to_epoch_ms
from core.entities import Candle, Entity, ScoreEvent

__all__ = [
    "AGGREGATE_ID",
    "AGGREGATE_NAME",
    "SourceContribution",
    "Breakdown",
    "merge_all",
    "breakdown_by_source",
]

logger = logging.getLogger(__name__)

AGGREGATE_ID = "ALL"
AGGREGATE_NAME = "All directions (sum)"


def merge_all(
    live: Iterable[Entity], soft_deleted: Iterable[Entity]
) -> Entity | None:
    """Merge live and non-colliding soft-deleted entities into one entity.

    Every copied event carries its source id and name. Returns None when the
    merged event set is empty.
    """
    live = list(live)
    live_ids = {entity.id for entity in live}
    events: list[ScoreEvent] = []
    skipped = 0

    for entity in live:
        events.extend(_tag(entity))

    for entity in soft_deleted:
        if entity.id in live_ids:
            skipped += 1
            continue
        events.extend(_tag(entity))

    if skipped:
        logger.debug(f"Skipped {skipped} soft-deleted entities shadowed by live ids")

    if not events:
        return None
    return Entity(id=AGGREGATE_ID, name=AGGREGATE_NAME, events=events)


def _tag(entity: Entity) -> list[ScoreEvent]:
    return [
        replace(event, source_id=entity.id, source_name=entity.name)
        for event in entity.events
    ]


@dataclass
class SourceContribution:
    """What one source direction added to an aggregate candle."""

    source_id: str
    source_name: str
    total: float = 0.0
    values: list[float] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.values)


@dataclass
class Breakdown:
    contributions: list[SourceContribution]

    @property
    def total(self) -> float:
        return sum(item.total for item in self.contributions)

    @property
    def event_count(self) -> int:
        return sum(item.count for item in self.contributions)


def breakdown_by_source(aggregate: Entity, candle: Candle) -> Breakdown:
    """Attribute the events inside ``candle`` to their source directions.

    Contributions are ordered by absolute total, largest first.
    """
    start = to_epoch_ms(candle.period_start)
    end = to_epoch_ms(candle.period_end)
    by_source: dict[str, SourceContribution] = {}

    for event in sorted(aggregate.events, key=lambda event: event.occurred_ms):
        if not start <= event.occurred_ms < end:
            continue
        source_id = event.source_id or aggregate.id
        item = by_source.get(source_id)
        if item is None:
            item = SourceContribution(
                source_id=source_id, source_name=event.source_name or aggregate.name
            )
            by_source[source_id] = item
        item.total += event.value
        item.values.append(event.value)

    contributions = sorted(
        by_source.values(), key=lambda item: abs(item.total), reverse=True
    )
    return Breakdown(contributions=contributions)
