"""
Tests for the running-total candle builder.

Covers the worked one-minute example, doji gap filling, active candle
marking, calendar-day grouping and property-based invariants (continuity,
OHLC bounds, conservation, doji, order independence).
"""

import random
from datetime import timedelta

import numpy as np
import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from core.chart.builder import CandleBuilder, sort_events
from core.clock import SimClock, to_epoch_ms
from core.entities import ScoreEvent
from core.periods import DAY_MS, HOUR_MS, MINUTE_MS, PeriodCatalogue
from tests.fixtures import BASE_MS, BASE_TIME, at, create_entity, create_events


class TestCandleBuilder:
    """Test suite for fixed-interval candle building."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = SimClock(BASE_MS + 90_000)  # inside the second minute
        self.builder = CandleBuilder(clock=self.clock)

    def test_worked_example(self):
        """Two events one minute apart produce two continuous candles."""
        events = create_events([(5, 0), (-2, 70)])

        series = self.builder.build(events, "1m", entity_id="7", entity_name="Reading")

        assert series is not None
        assert len(series) == 2
        first, second = series.candles
        assert (first.open, first.high, first.low, first.close) == (0, 5, 0, 5)
        assert first.event_count == 1
        assert (second.open, second.high, second.low, second.close) == (5, 5, 3, 3)
        assert second.event_count == 1
        assert first.period_start == BASE_TIME
        assert second.period_end == at(120)
        assert series.entity_name == "Reading"
        assert series.interval_ms == MINUTE_MS

    def test_only_current_bucket_is_active(self):
        events = create_events([(5, 0), (-2, 70)])

        series = self.builder.build(events, "1m")

        assert [candle.is_active for candle in series] == [False, True]
        assert series.active_candle is series.candles[-1]
        assert series.candles[0].is_completed

    def test_gaps_become_doji_candles(self):
        """Empty buckets between events still produce flat candles."""
        self.clock.set_ms(BASE_MS + 5 * MINUTE_MS + 1)
        events = create_events([(3, 10), (1, 250)])

        series = self.builder.build(events, "1m")

        assert len(series) == 6
        for candle in series.candles[1:4]:
            assert candle.is_empty
            assert candle.open == candle.high == candle.low == candle.close == 3
        assert series.candles[4].close == 4
        # Trailing bucket containing now has no events but is active
        assert series.candles[5].is_empty
        assert series.candles[5].is_active

    def test_series_extends_to_now(self):
        """The walk continues up to the bucket containing now."""
        self.clock.set_ms(BASE_MS + 3 * HOUR_MS)
        events = create_events([(1, 0)])

        series = self.builder.build(events, "1h")

        assert len(series) == 4
        assert series.candles[-1].is_active
        assert series.candles[-1].close == 1

    def test_high_low_track_intra_bucket_extremes(self):
        events = create_events([(4, 1), (-10, 2), (3, 3)])

        series = self.builder.build(events, "1m", now_ms=BASE_MS + 30_000)

        candle = series.candles[0]
        assert candle.high == 4
        assert candle.low == -6
        assert candle.close == -3

    def test_empty_events_return_none(self):
        assert self.builder.build([], "1m") is None

    def test_unknown_period_returns_none(self):
        events = create_events([(1, 0)])
        assert self.builder.build(events, "4h") is None

    def test_future_events_yield_zero_length_series(self):
        """Events after the current bucket are not charted yet."""
        events = create_events([(1, 600)])

        series = self.builder.build(events, "1m", now_ms=BASE_MS)

        assert series is not None
        assert len(series) == 0

    def test_future_events_are_excluded(self):
        events = create_events([(2, 10), (7, 600)])

        series = self.builder.build(events, "1m", now_ms=BASE_MS + 30_000)

        assert len(series) == 1
        assert series.candles[0].close == 2

    def test_now_ms_overrides_clock(self):
        events = create_events([(1, 0)])

        series = self.builder.build(events, "10s", now_ms=BASE_MS + 25_000)

        assert len(series) == 3

    def test_builds_are_counted(self):
        events = create_events([(1, 0)])
        self.builder.build(events, "1m")
        self.builder.build(events, "5m")
        assert self.builder.builds == 2

    def test_build_for_entity(self):
        entity = create_entity("9", [(2, 0)], name="Sport")

        series = self.builder.build_for_entity(entity, PeriodCatalogue.M1)

        assert series.entity_id == "9"
        assert series.entity_name == "Sport"
        assert series.period is PeriodCatalogue.M1

    def test_stable_sort_keeps_tie_order(self):
        events = create_events([(1, 5), (2, 5), (3, 0)])

        ordered = sort_events(events)

        assert [event.value for event in ordered] == [3, 1, 2]


class TestCalendarMode:
    """Test suite for calendar-day candles."""

    def setup_method(self):
        """Set up test fixtures."""
        self.builder = CandleBuilder(clock=SimClock(BASE_MS + 5 * DAY_MS + HOUR_MS))

    def test_one_candle_per_day_with_events(self):
        """Days without events produce no candle."""
        events = create_events([(1, 3600), (2, 7200), (-4, 3 * 86400 + 60)])

        series = self.builder.build(events, "all")

        assert len(series) == 2
        first, second = series.candles
        assert (first.open, first.high, first.low, first.close) == (0, 3, 0, 3)
        assert first.event_count == 2
        assert (second.open, second.high, second.low, second.close) == (3, 3, -1, -1)
        assert series.interval_ms is None

    def test_display_time_is_midday(self):
        events = create_events([(1, 3600)])

        series = self.builder.build(events, "all")

        candle = series.candles[0]
        assert candle.period_start == BASE_TIME
        assert candle.display_at == BASE_TIME + timedelta(hours=12)
        assert candle.period_end == BASE_TIME + timedelta(days=1)

    def test_today_is_active(self):
        events = create_events([(1, 3600), (1, 5 * 86400 + 60)])

        series = self.builder.build(events, "all")

        assert [candle.is_active for candle in series] == [False, True]


# Unique millisecond offsets within two hours, paired with bounded values
event_lists = st.lists(
    st.tuples(
        st.integers(min_value=0, max_value=2 * HOUR_MS - 1),
        st.floats(min_value=-100, max_value=100, allow_nan=False, allow_infinity=False),
    ),
    min_size=1,
    max_size=40,
    unique_by=lambda item: item[0],
)

NOW_MS = BASE_MS + 2 * HOUR_MS + 1


def _events(items):
    return [
        ScoreEvent(value=value, occurred_at=at(offset / 1000)) for offset, value in items
    ]


@given(event_lists, st.sampled_from(["10s", "1m", "5m", "30m", "1h", "all"]))
@settings(max_examples=60, deadline=None)
def test_continuity_and_bounds(items, period):
    """Each candle opens at the previous close and its range covers open/close."""
    series = CandleBuilder().build(_events(items), period, now_ms=NOW_MS)

    assert series.candles[0].open == 0
    for previous, current in zip(series.candles, series.candles[1:]):
        assert current.open == previous.close
    for candle in series:
        assert candle.high >= max(candle.open, candle.close)
        assert candle.low <= min(candle.open, candle.close)
        if candle.event_count == 0:
            assert candle.open == candle.high == candle.low == candle.close


@given(event_lists, st.sampled_from(["10s", "1m", "5m", "1h"]))
@settings(max_examples=60, deadline=None)
def test_conservation(items, period):
    """close - open equals the sum of values inside the candle's bucket."""
    events = _events(items)
    series = CandleBuilder().build(events, period, now_ms=NOW_MS)

    for candle in series:
        start = to_epoch_ms(candle.period_start)
        end = to_epoch_ms(candle.period_end)
        inside = [e.value for e in events if start <= e.occurred_ms < end]
        assert len(inside) == candle.event_count
        assert np.isclose(candle.close - candle.open, sum(inside), atol=1e-9)


@given(event_lists, st.randoms(use_true_random=False))
@settings(max_examples=40, deadline=None)
def test_order_independence(items, rnd):
    """Shuffling the input yields an identical series."""
    events = _events(items)
    shuffled = list(events)
    rnd.shuffle(shuffled)

    builder = CandleBuilder()
    assert builder.build(events, "1m", now_ms=NOW_MS) == builder.build(
        shuffled, "1m", now_ms=NOW_MS
    )


@pytest.mark.parametrize("period", ["1m", "5m", "1h"])
def test_total_matches_final_close(period):
    rng = random.Random(7)
    items = [(rng.randint(0, 2 * HOUR_MS - 1), rng.uniform(-5, 5)) for _ in range(50)]
    events = _events(items)

    series = CandleBuilder().build(events, period, now_ms=NOW_MS)

    assert series.candles[-1].close == pytest.approx(sum(e.value for e in events))
