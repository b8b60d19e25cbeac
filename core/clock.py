"""
Time source for candle bucketing and refresh scheduling.

Every "now" the engine reads goes through a Clock so that bucket rollovers can
be driven deterministically in tests (SimClock) and follow the wall clock in
the running application (WallClock).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Protocol

EPOCH = datetime(1970, 1, 1, tzinfo=UTC)

__all__ = [
    "Clock",
    "WallClock",
    "SimClock",
    "get_clock",
    "set_clock",
    "use_simulation_clock",
    "use_wall_clock",
    "to_epoch_ms",
    "from_epoch_ms",
]


def to_epoch_ms(ts: datetime) -> int:
    """Convert a datetime to integer milliseconds since the Unix epoch.

    Naive datetimes are interpreted as UTC. Integer division on the timedelta
    keeps the result exact (no float rounding at bucket edges).
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return (ts - EPOCH) // timedelta(milliseconds=1)


def from_epoch_ms(ms: int) -> datetime:
    """Convert epoch milliseconds to an aware UTC datetime."""
    return EPOCH + timedelta(milliseconds=ms)


class Clock(Protocol):
    """Clock interface for time management."""

    def now(self) -> datetime:
        """Get current time as timezone-aware datetime."""
        ...

    def now_ms(self) -> int:
        """Get current time as milliseconds since epoch."""
        ...


class WallClock:
    """Real wall-clock time implementation."""

    def now(self) -> datetime:
        return datetime.now(UTC)

    def now_ms(self) -> int:
        return to_epoch_ms(self.now())


class SimClock:
    """Manually advanced clock for deterministic bucket rollovers."""

    def __init__(self, start_time: datetime | int | None = None):
        """
        Initialize simulation clock.

        Args:
            start_time: Starting time as datetime or epoch milliseconds
                (defaults to current wall-clock time)
        """
        if start_time is None:
            self._current_ms = WallClock().now_ms()
        elif isinstance(start_time, datetime):
            self._current_ms = to_epoch_ms(start_time)
        else:
            self._current_ms = int(start_time)

    def now(self) -> datetime:
        return from_epoch_ms(self._current_ms)

    def now_ms(self) -> int:
        return self._current_ms

    def advance(self, new_time: datetime) -> None:
        """
        Move the clock to a later instant.

        Args:
            new_time: New time (must be >= current time)
        """
        self.set_ms(to_epoch_ms(new_time))

    def advance_ms(self, ms_delta: int) -> None:
        """Advance the clock by a number of milliseconds."""
        self.set_ms(self._current_ms + ms_delta)

    def set_ms(self, epoch_ms: int) -> None:
        if epoch_ms < self._current_ms:
            raise ValueError(
                f"Cannot move time backwards: {epoch_ms} < {self._current_ms}"
            )
        self._current_ms = epoch_ms


# Global clock instance - defaults to wall clock
_global_clock: Clock = WallClock()


def get_clock() -> Clock:
    """Get the global clock instance."""
    return _global_clock


def set_clock(clock: Clock) -> None:
    """Set the global clock instance."""
    global _global_clock
    _global_clock = clock


def use_simulation_clock(start_time: datetime | int | None = None) -> SimClock:
    """
    Switch the process to a simulation clock.

    Args:
        start_time: Starting simulation time

    Returns:
        The simulation clock instance
    """
    sim_clock = SimClock(start_time)
    set_clock(sim_clock)
    return sim_clock


def use_wall_clock() -> WallClock:
    """Switch back to the wall clock."""
    wall_clock = WallClock()
    set_clock(wall_clock)
    return wall_clock
