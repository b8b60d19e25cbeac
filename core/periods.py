"""Chart period catalogue and epoch bucket arithmetic."""

from __future__ import annotations

from datetime import datetime
from typing import NamedTuple

from core.clock import from_epoch_ms, to_epoch_ms

__all__ = [
    "Period",
    "PeriodCatalogue",
    "IntervalInfo",
    "SECOND_MS",
    "MINUTE_MS",
    "HOUR_MS",
    "DAY_MS",
    "get_bucket_id",
    "get_bucket_start",
    "interval_info",
]

SECOND_MS = 1000
MINUTE_MS = 60 * SECOND_MS
HOUR_MS = 60 * MINUTE_MS
DAY_MS = 24 * HOUR_MS


class Period(NamedTuple):
    """One granularity a chart can be viewed at.

    ``interval_ms`` is None for the calendar-day mode, where candles are
    grouped per UTC date and days without events produce no candle.
    """

    code: str
    interval_ms: int | None
    unit: str
    label: str
    axis_label: str

    @property
    def is_fixed_interval(self) -> bool:
        return self.interval_ms is not None

    @property
    def bucket_ms(self) -> int:
        """Width of the bucket used for "current bucket" tracking.

        Calendar-day mode tracks UTC days.
        """
        return self.interval_ms if self.interval_ms is not None else DAY_MS

    def bucket_id(self, epoch_ms: int) -> int:
        """Get bucket ID for an instant using floor division on the epoch.

        Example:
            >>> PeriodCatalogue.M1.bucket_id(125_000)
            2
        """
        return epoch_ms // self.bucket_ms

    def bucket_start_ms(self, epoch_ms: int) -> int:
        return self.bucket_id(epoch_ms) * self.bucket_ms

    def bucket_start(self, timestamp: datetime) -> datetime:
        """Get start time of the bucket containing the given timestamp.

        Example:
            >>> ts = datetime(2024, 1, 1, 10, 30, 0, tzinfo=UTC)
            >>> PeriodCatalogue.H1.bucket_start(ts)
            datetime.datetime(2024, 1, 1, 10, 0, tzinfo=datetime.timezone.utc)
        """
        return from_epoch_ms(self.bucket_start_ms(to_epoch_ms(timestamp)))

    def __str__(self) -> str:
        return f"{self.code}({self.label})"


class PeriodCatalogue:
    """Closed set of supported chart periods."""

    S10 = Period("10s", 10 * SECOND_MS, "second", "10 seconds", "10 sec")
    M1 = Period("1m", MINUTE_MS, "minute", "1 minute", "1 min")
    M5 = Period("5m", 5 * MINUTE_MS, "minute", "5 minutes", "5 min")
    M30 = Period("30m", 30 * MINUTE_MS, "minute", "30 minutes", "30 min")
    H1 = Period("1h", HOUR_MS, "hour", "1 hour", "1 h")
    H2 = Period("2h", 2 * HOUR_MS, "hour", "2 hours", "2 h")
    H6 = Period("6h", 6 * HOUR_MS, "hour", "6 hours", "6 h")
    H12 = Period("12h", 12 * HOUR_MS, "hour", "12 hours", "12 h")
    D1 = Period("1d", DAY_MS, "day", "1 day", "1 day")
    D3 = Period("3d", 3 * DAY_MS, "day", "3 days", "Days")
    D7 = Period("7d", 7 * DAY_MS, "day", "7 days", "Days")
    D10 = Period("10d", 10 * DAY_MS, "day", "10 days", "Days")
    MO1 = Period("1M", 30 * DAY_MS, "month", "1 month", "Months")
    MO3 = Period("3M", 90 * DAY_MS, "month", "3 months", "Months")
    MO6 = Period("6M", 180 * DAY_MS, "month", "6 months", "Months")
    Y1 = Period("1Y", 365 * DAY_MS, "year", "1 year", "Year")
    ALL = Period("all", None, "day", "all days", "Time")

    @classmethod
    def periods(cls) -> list[Period]:
        """All periods, shortest first, calendar-day mode last."""
        return [
            cls.S10,
            cls.M1,
            cls.M5,
            cls.M30,
            cls.H1,
            cls.H2,
            cls.H6,
            cls.H12,
            cls.D1,
            cls.D3,
            cls.D7,
            cls.D10,
            cls.MO1,
            cls.MO3,
            cls.MO6,
            cls.Y1,
            cls.ALL,
        ]

    @classmethod
    def resolve(cls, period: str | Period) -> Period | None:
        """Look up a period by code. Unknown codes resolve to None."""
        if isinstance(period, Period):
            return period if period in cls.periods() else None
        for candidate in cls.periods():
            if candidate.code == period:
                return candidate
        return None

    @classmethod
    def codes(cls) -> list[str]:
        return [period.code for period in cls.periods()]


class IntervalInfo(NamedTuple):
    """The bucket containing "now" and how long until it closes."""

    period: Period
    start_ms: int
    end_ms: int
    time_left_ms: int

    @property
    def time_left_seconds(self) -> int:
        # Ceil division, never negative
        return max(0, -(-self.time_left_ms // SECOND_MS))

    @property
    def start(self) -> datetime:
        return from_epoch_ms(self.start_ms)

    @property
    def end(self) -> datetime:
        return from_epoch_ms(self.end_ms)


def get_bucket_id(epoch_ms: int, interval_ms: int) -> int:
    """Get bucket ID for an instant and a bucket width in milliseconds."""
    return epoch_ms // interval_ms


def get_bucket_start(epoch_ms: int, interval_ms: int) -> int:
    """Get the aligned start (epoch ms) of the bucket containing ``epoch_ms``.

    Example:
        >>> get_bucket_start(70_000, 60_000)
        60000
    """
    return get_bucket_id(epoch_ms, interval_ms) * interval_ms


def interval_info(period: Period, now_ms: int) -> IntervalInfo:
    """Describe the bucket of ``period`` that contains ``now_ms``."""
    start = period.bucket_start_ms(now_ms)
    end = start + period.bucket_ms
    return IntervalInfo(
        period=period, start_ms=start, end_ms=end, time_left_ms=end - now_ms
    )
