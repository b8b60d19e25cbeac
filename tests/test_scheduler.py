"""
Unit tests for the refresh scheduler.

Tests cover:
- Rollover detection with a deterministic clock
- Countdown info on every tick, including calendar-day mode
- Reconfiguration and task replacement on the event loop
"""

import asyncio
import logging

import pytest

from core.chart.scheduler import RefreshScheduler
from core.clock import SimClock
from core.periods import MINUTE_MS, PeriodCatalogue
from tests.fixtures import BASE_MS


class TestRefreshSchedulerTick:
    """Test suite for synchronous tick behaviour."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = SimClock(BASE_MS + 10_000)
        self.rollovers = []
        self.ticks = []
        self.scheduler = RefreshScheduler(
            self.rollovers.append,
            on_tick=self.ticks.append,
            interval_ms=500,
            clock=self.clock,
        )

    def test_idle_without_period(self):
        assert self.scheduler.tick() is False
        assert self.rollovers == []
        assert self.ticks == []
        assert self.scheduler.ticks == 1

    def test_first_tick_counts_as_rollover(self):
        self.scheduler.configure("1m")

        assert self.scheduler.tick() is True
        assert self.rollovers[0].start_ms == BASE_MS

    def test_rollover_only_on_bucket_change(self):
        self.scheduler.configure("1m")
        self.scheduler.tick()

        self.clock.advance_ms(30_000)
        assert self.scheduler.tick() is False

        self.clock.set_ms(BASE_MS + MINUTE_MS)
        assert self.scheduler.tick() is True

        assert self.scheduler.rollovers == 2
        assert [info.start_ms for info in self.rollovers] == [BASE_MS, BASE_MS + MINUTE_MS]

    def test_every_tick_publishes_interval_info(self):
        self.scheduler.configure("1m")
        self.scheduler.tick()
        self.clock.advance_ms(500)
        self.scheduler.tick()

        assert len(self.ticks) == 2
        info = self.ticks[-1]
        assert info.period is PeriodCatalogue.M1
        assert info.end_ms == BASE_MS + MINUTE_MS
        assert info.time_left_ms == 49_500
        assert info.time_left_seconds == 50

    def test_calendar_mode_never_forces_rollover(self):
        """Calendar-day periods only refresh the countdown."""
        self.scheduler.configure("all")

        assert self.scheduler.tick() is False
        self.clock.advance_ms(2 * 86_400_000)
        assert self.scheduler.tick() is False

        assert self.rollovers == []
        assert len(self.ticks) == 2

    def test_unknown_period_leaves_scheduler_idle(self, caplog):
        with caplog.at_level(logging.WARNING):
            self.scheduler.configure("2w")

        assert self.scheduler.period is None
        assert self.scheduler.tick() is False
        assert "Unknown period" in caplog.text

    def test_reconfigure_resets_last_bucket(self):
        self.scheduler.configure("1m")
        self.scheduler.tick()

        self.scheduler.reconfigure("5m")

        assert self.scheduler.tick() is True
        assert self.scheduler.period is PeriodCatalogue.M5

    def test_invalid_interval(self):
        with pytest.raises(ValueError):
            RefreshScheduler(lambda info: None, interval_ms=0)


class TestRefreshSchedulerLoop:
    """Test suite for the asyncio tick loop."""

    def setup_method(self):
        """Set up test fixtures."""
        self.clock = SimClock(BASE_MS)
        self.rollovers = []
        self.scheduler = RefreshScheduler(
            self.rollovers.append, interval_ms=10, clock=self.clock
        )
        self.scheduler.configure("10s")

    @pytest.mark.asyncio
    async def test_start_and_shutdown(self):
        self.scheduler.start()
        assert self.scheduler.is_running

        await asyncio.sleep(0.05)
        await self.scheduler.shutdown()

        assert not self.scheduler.is_running
        assert self.scheduler.ticks >= 2
        assert len(self.rollovers) == 1

    @pytest.mark.asyncio
    async def test_start_replaces_previous_task(self):
        first = self.scheduler.start()
        second = self.scheduler.start()
        await asyncio.sleep(0.02)

        assert first.cancelled()
        assert not second.done()
        await self.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_reconfigure_while_running(self):
        first = self.scheduler.start()
        await asyncio.sleep(0.02)

        self.scheduler.reconfigure("1m")
        await asyncio.sleep(0.02)

        assert first.cancelled()
        assert self.scheduler.is_running
        assert self.scheduler.period is PeriodCatalogue.M1
        assert len(self.rollovers) == 2
        await self.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_failing_callback_does_not_stop_loop(self, caplog):
        def explode(info):
            raise RuntimeError("render failed")

        scheduler = RefreshScheduler(explode, interval_ms=10, clock=self.clock)
        scheduler.configure("10s")

        with caplog.at_level(logging.ERROR):
            scheduler.start()
            await asyncio.sleep(0.02)
            self.clock.advance_ms(10_000)
            await asyncio.sleep(0.03)
            await scheduler.shutdown()

        assert scheduler.rollovers == 2
        assert "Refresh tick failed" in caplog.text
