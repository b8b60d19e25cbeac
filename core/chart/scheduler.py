"""
Periodic refresh tick that detects bucket rollovers.

Whether a new candle has started is decided by the wall clock, not by data
changes, so the scheduler polls: every tick it computes the start of the
current bucket and compares it with the last one seen. Only a change triggers
the rollover callback (recompute + viewport refresh). Every tick publishes the
interval info so a "time until close" label can stay current, including in
calendar-day mode where no recomputation is forced.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import suppress

from core.clock import Clock, get_clock
from core.periods import IntervalInfo, Period, PeriodCatalogue, interval_info

__all__ = ["RefreshScheduler", "IntervalCallback"]

logger = logging.getLogger(__name__)

IntervalCallback = Callable[[IntervalInfo], None]


class RefreshScheduler:
    """Polls the clock and fires ``on_rollover`` when a new bucket begins.

    Args:
        on_rollover: Called once per new bucket for fixed-interval periods.
        on_tick: Called on every tick with the current interval info.
        interval_ms: Tick period in milliseconds.
        clock: Time source (defaults to the global clock).

    Example:
        >>> scheduler = RefreshScheduler(engine.refresh, interval_ms=500)
        >>> scheduler.configure("1m")
        >>> scheduler.start()  # inside a running event loop
    """

    def __init__(
        self,
        on_rollover: IntervalCallback,
        on_tick: IntervalCallback | None = None,
        interval_ms: int = 500,
        clock: Clock | None = None,
    ):
        if interval_ms <= 0:
            raise ValueError("interval_ms must be positive")

        self._on_rollover = on_rollover
        self._on_tick = on_tick
        self.interval_ms = interval_ms
        self._clock = clock
        self._period: Period | None = None
        self._last_bucket_start: int | None = None
        self._task: asyncio.Task[None] | None = None

        self.ticks = 0
        self.rollovers = 0

    @property
    def period(self) -> Period | None:
        return self._period

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def configure(self, period: str | Period | None) -> None:
        """Select the period to watch. The next tick always counts as a rollover."""
        self._period = PeriodCatalogue.resolve(period) if period is not None else None
        self._last_bucket_start = None
        if period is not None and self._period is None:
            logger.warning(f"Unknown period {period!r}; scheduler idle")

    def tick(self) -> bool:
        """Run one poll.

        Returns:
            True if a rollover was fired.
        """
        self.ticks += 1
        period = self._period
        if period is None:
            return False

        info = interval_info(period, (self._clock or get_clock()).now_ms())
        if self._on_tick is not None:
            self._on_tick(info)

        if not period.is_fixed_interval:
            return False
        if info.start_ms == self._last_bucket_start:
            return False

        self._last_bucket_start = info.start_ms
        self.rollovers += 1
        logger.debug(f"Bucket rollover for {period.code} at {info.start_ms}")
        self._on_rollover(info)
        return True

    async def run(self) -> None:
        """Tick forever; cancel the task to stop."""
        delay = self.interval_ms / 1000
        while True:
            try:
                self.tick()
            except Exception:
                logger.exception("Refresh tick failed")
            await asyncio.sleep(delay)

    def start(self) -> asyncio.Task[None]:
        """Start ticking on the running event loop, replacing any previous task."""
        self.stop()
        self._task = asyncio.get_running_loop().create_task(self.run())
        logger.info(
            f"Refresh scheduler started (period={self._period and self._period.code}, "
            f"every {self.interval_ms}ms)"
        )
        return self._task

    def stop(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def shutdown(self) -> None:
        """Stop and wait for the tick task to finish."""
        task = self._task
        self.stop()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task

    def reconfigure(self, period: str | Period | None) -> None:
        """Switch period, cancelling the old tick first so only one timer drives the charts."""
        was_running = self.is_running
        self.stop()
        self.configure(period)
        if was_running:
            self.start()
