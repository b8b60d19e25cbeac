"""Running-total OHLC candle builder for score event streams."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import timedelta

from core.clock import Clock, from_epoch_ms, get_clock
from core.entities import Candle, Entity, ScoreEvent, Series
from core.periods import DAY_MS, HOUR_MS, Period, PeriodCatalogue

__all__ = ["CandleBuilder", "CALENDAR_DISPLAY_HOUR", "sort_events"]

logger = logging.getLogger(__name__)

# Calendar-day candles are displayed at midday so they sit centred on the date
CALENDAR_DISPLAY_HOUR = 12


def sort_events(events: Iterable[ScoreEvent]) -> list[ScoreEvent]:
    """Sort events by time; ties keep their original relative order."""
    return sorted(events, key=lambda event: event.occurred_ms)


@dataclass
class CandleBuilder:
    """Turns an event stream into a continuous candle series.

    The "price" of a direction is the running total of its event values. Each
    candle opens at the previous candle's close (the first one opens at 0),
    and its high/low are the extremes of the running total inside the bucket,
    including the open value.

    Two modes, picked by the period:
        - Fixed interval: epoch-aligned buckets from the bucket of the earliest
          event up to and including the bucket containing "now". Buckets
          without events still produce a flat (doji) candle. Events dated
          after the current bucket are not charted yet.
        - Calendar day: one candle per UTC date that has events.

    Args:
        clock: Time source for "now" (defaults to the global clock).

    Example:
        >>> builder = CandleBuilder()
        >>> series = builder.build(events, "1m", entity_id="7", entity_name="Reading")
        >>> series.candles[-1].is_active
        True
    """

    clock: Clock | None = None
    builds: int = field(default=0, init=False)

    def _now_ms(self) -> int:
        return (self.clock or get_clock()).now_ms()

    def build(
        self,
        events: Sequence[ScoreEvent],
        period: str | Period,
        *,
        entity_id: str = "",
        entity_name: str = "",
        now_ms: int | None = None,
    ) -> Series | None:
        """Build the candle series for ``events`` at ``period``.

        Args:
            events: Score events in any order.
            period: Period code or catalogue entry.
            entity_id: Id recorded on the series.
            entity_name: Display name recorded on the series.
            now_ms: Instant treated as "now" (defaults to the clock).

        Returns:
            The series, or None when there are no events or the period is
            unknown. A series with zero candles is returned when every event
            lies after the current bucket.
        """
        resolved = PeriodCatalogue.resolve(period)
        if resolved is None or not events:
            return None

        ordered = sort_events(events)
        if now_ms is None:
            now_ms = self._now_ms()
        if resolved.interval_ms is not None:
            candles = self._build_fixed(ordered, resolved.interval_ms, now_ms)
        else:
            candles = self._build_calendar(ordered, now_ms)

        self.builds += 1
        logger.debug(
            f"Built {len(candles)} candles for entity={entity_id!r} "
            f"period={resolved.code} from {len(ordered)} events"
        )
        return Series(
            entity_id=entity_id,
            entity_name=entity_name,
            period=resolved,
            candles=tuple(candles),
            interval_ms=resolved.interval_ms,
        )

    def build_for_entity(
        self, entity: Entity, period: str | Period, now_ms: int | None = None
    ) -> Series | None:
        return self.build(
            entity.events,
            period,
            entity_id=entity.id,
            entity_name=entity.name,
            now_ms=now_ms,
        )

    def _build_fixed(
        self, ordered: list[ScoreEvent], interval_ms: int, now_ms: int
    ) -> list[Candle]:
        times = [event.occurred_ms for event in ordered]
        bucket_start = (times[0] // interval_ms) * interval_ms
        current_start = (now_ms // interval_ms) * interval_ms

        candles: list[Candle] = []
        running_total = 0.0
        index = 0
        count = len(ordered)

        while bucket_start <= current_start:
            bucket_end = bucket_start + interval_ms
            open_value = running_total
            high = low = running_total
            events_in_bucket = 0

            while index < count and times[index] < bucket_end:
                running_total += ordered[index].value
                high = max(high, running_total)
                low = min(low, running_total)
                events_in_bucket += 1
                index += 1

            period_start = from_epoch_ms(bucket_start)
            candles.append(
                Candle(
                    period_start=period_start,
                    period_end=from_epoch_ms(bucket_end),
                    open=open_value,
                    high=high,
                    low=low,
                    close=running_total,
                    event_count=events_in_bucket,
                    is_active=bucket_start == current_start,
                    display_at=period_start,
                )
            )
            bucket_start = bucket_end

        return candles

    def _build_calendar(self, ordered: list[ScoreEvent], now_ms: int) -> list[Candle]:
        today = now_ms // DAY_MS
        candles: list[Candle] = []
        running_total = 0.0
        index = 0
        count = len(ordered)

        while index < count:
            day = ordered[index].occurred_ms // DAY_MS
            open_value = running_total
            high = low = running_total
            events_in_day = 0

            while index < count and ordered[index].occurred_ms // DAY_MS == day:
                running_total += ordered[index].value
                high = max(high, running_total)
                low = min(low, running_total)
                events_in_day += 1
                index += 1

            period_start = from_epoch_ms(day * DAY_MS)
            candles.append(
                Candle(
                    period_start=period_start,
                    period_end=period_start + timedelta(milliseconds=DAY_MS),
                    open=open_value,
                    high=high,
                    low=low,
                    close=running_total,
                    event_count=events_in_day,
                    is_active=day == today,
                    display_at=period_start
                    + timedelta(milliseconds=CALENDAR_DISPLAY_HOUR * HOUR_MS),
                )
            )

        return candles
