"""
Small formatting and rounding helpers shared by the chart engine.

The candle math itself never rounds; these helpers exist for labels and for
converting pixel drags into whole candle counts.
"""

from __future__ import annotations

import math
from decimal import ROUND_HALF_UP, Decimal


def round_half_up(value: float) -> int:
    """Round to the nearest integer, ties towards positive infinity.

    Examples:
        >>> round_half_up(2.5)
        3
        >>> round_half_up(-2.5)
        -2
        >>> round_half_up(-2.6)
        -3
    """
    return math.floor(value + 0.5)


def format_score(value: float, places: int = 2) -> str:
    """Format a running total or delta for display.

    Args:
        value: Score value
        places: Number of decimal places

    Returns:
        Signed string with a leading '+' for positive values

    Examples:
        >>> format_score(3)
        '+3.00'
        >>> format_score(-0.125, 2)
        '-0.13'
        >>> format_score(0)
        '0.00'
    """
    if places < 0:
        raise ValueError("places must be non-negative")

    quantum = Decimal(1).scaleb(-places)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    text = f"{rounded:.{places}f}"
    if rounded > 0:
        return f"+{text}"
    if rounded == 0:
        return f"{Decimal(0):.{places}f}"
    return text


def format_countdown(time_left_ms: int) -> str:
    """Format time until a bucket closes as ``[HH:]MM:SS``.

    Hours are shown only when non-zero; negative input clamps to zero.

    Examples:
        >>> format_countdown(61_500)
        '01:02'
        >>> format_countdown(3_600_000)
        '01:00:00'
    """
    seconds = max(0, -(-time_left_ms // 1000))
    hours, remainder = divmod(seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours > 0:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"
