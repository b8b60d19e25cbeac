"""
Zoom/pan state machine over a candle series.

Each chart owns one ViewportController. The controller keeps a ZoomState:
how many candles are visible and which candle the view is centred on. A
centre of ``None`` means auto-follow: the window always ends at the newest
candle. Any integer pins the view to that candle index.

Parameters that would move the view outside the series are clamped, never
reported as errors.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass, replace
from enum import Enum

from core.entities import Candle, Series, ViewWindow
from core.utils import round_half_up

__all__ = [
    "ZoomConfig",
    "ZoomState",
    "NavDirection",
    "ViewportController",
    "compute_window",
]

logger = logging.getLogger(__name__)


@dataclass
class ZoomConfig:
    """Configuration for a chart viewport."""

    visible_count: int = 50  # Candles shown after a reset
    min_count: int = 10  # Deepest zoom
    max_count: int = 1000  # Widest zoom
    render_cap: int = 800  # Hard ceiling on candles handed to the renderer

    zoom_in_factor: float = 0.7
    zoom_out_factor: float = 1.4

    # Dragging this many pixels moves one screenful of candles
    pan_reference_pixels: int = 800
    min_candles_per_pixel: float = 0.02

    navigation_step: int = 5

    def __post_init__(self) -> None:
        if self.min_count <= 0:
            raise ValueError("min_count must be positive")
        if self.max_count < self.min_count:
            raise ValueError("max_count must be >= min_count")
        if not self.min_count <= self.visible_count <= self.max_count:
            raise ValueError("visible_count must be within [min_count, max_count]")
        if self.render_cap <= 0:
            raise ValueError("render_cap must be positive")
        if not 0 < self.zoom_in_factor < 1:
            raise ValueError("zoom_in_factor must be in (0, 1)")
        if self.zoom_out_factor <= 1:
            raise ValueError("zoom_out_factor must be > 1")
        if self.pan_reference_pixels <= 0:
            raise ValueError("pan_reference_pixels must be positive")
        if self.navigation_step <= 0:
            raise ValueError("navigation_step must be positive")


@dataclass
class ZoomState:
    visible_count: int
    center_index: int | None
    min_count: int
    max_count: int

    @property
    def half_visible(self) -> int:
        return self.visible_count // 2

    @property
    def is_following(self) -> bool:
        return self.center_index is None


class NavDirection(Enum):
    """Discrete navigation directions."""

    LEFT = "left"  # towards older candles
    RIGHT = "right"  # towards newer candles


def compute_window(
    candles: Sequence[Candle], zoom: ZoomState, render_cap: int | None = None
) -> ViewWindow:
    """Slice the visible candles out of a series.

    The window is ``min(visible_count, total)`` wide. In auto-follow mode it
    holds the newest candles; otherwise it is centred on the pinned index,
    clamped so the window stays inside the series. When the series is shorter
    than the zoom asks for, the whole series is returned (degraded width).
    ``render_cap`` then keeps only the newest candles of the window.
    """
    total = len(candles)
    if total == 0:
        return ViewWindow(
            candles=(), start_index=0, end_index=-1, total_candles=0, visible_count=0
        )

    visible = min(zoom.visible_count, total)

    if zoom.center_index is None:
        end = total - 1
        start = max(0, end - visible + 1)
    else:
        half = visible // 2
        center = max(half, min(total - 1 - half, zoom.center_index))
        start = max(0, center - half)
        end = min(total - 1, start + visible - 1)
        if end - start + 1 < visible and start > 0:
            start = max(0, end - visible + 1)

    if render_cap is not None and end - start + 1 > render_cap:
        start = end - render_cap + 1

    window = tuple(candles[start : end + 1])
    return ViewWindow(
        candles=window,
        start_index=start,
        end_index=end,
        total_candles=total,
        visible_count=len(window),
    )


class ViewportController:
    """Zoom, pan and navigation for one chart.

    Operations that need the series length take it as ``total`` so the
    controller stays independent of where the series comes from. All of them
    are no-ops on an empty series.

    Args:
        config: Viewport limits and factors.
        name: Label used in log messages (e.g. "primary", "aggregate").

    Example:
        >>> viewport = ViewportController(ZoomConfig(visible_count=20))
        >>> viewport.zoom_in(total=len(series))
        >>> window = viewport.window(series)
    """

    def __init__(self, config: ZoomConfig | None = None, name: str = "chart"):
        self.config = config or ZoomConfig()
        self.name = name
        self._state = ZoomState(
            visible_count=self.config.visible_count,
            center_index=None,
            min_count=self.config.min_count,
            max_count=self.config.max_count,
        )

    @property
    def state(self) -> ZoomState:
        """Snapshot of the zoom state."""
        return replace(self._state)

    def _clamp_count(self, count: int) -> int:
        return max(self._state.min_count, min(self._state.max_count, count))

    def _clamp_center(self, center: int, total: int) -> int:
        half = self._state.half_visible
        return max(half, min(total - 1 - half, center))

    def window(self, series: Series | Sequence[Candle]) -> ViewWindow:
        candles = series.candles if isinstance(series, Series) else series
        return compute_window(candles, self._state, self.config.render_cap)

    def zoom_in(self, total: int) -> None:
        self._rescale(self.config.zoom_in_factor, total)

    def zoom_out(self, total: int) -> None:
        self._rescale(self.config.zoom_out_factor, total)

    def _rescale(self, factor: float, total: int) -> None:
        if total <= 0:
            return
        state = self._state
        if state.center_index is None:
            # Keep the currently visible region in view rather than snapping
            state.center_index = total - state.half_visible

        state.visible_count = self._clamp_count(math.floor(state.visible_count * factor))
        state.center_index = self._clamp_center(state.center_index, total)
        logger.debug(
            f"[{self.name}] zoom x{factor}: visible={state.visible_count} "
            f"center={state.center_index}"
        )

    def pan(self, delta_pixels: float, total: int) -> None:
        """Shift the view by a horizontal drag.

        Dragging right (positive delta) reveals older candles. The wider the
        zoom, the more candles one pixel represents.
        """
        if total <= 0:
            return
        state = self._state
        candles_per_pixel = max(
            self.config.min_candles_per_pixel,
            state.visible_count / self.config.pan_reference_pixels,
        )
        candle_delta = round_half_up(delta_pixels * candles_per_pixel)

        if state.center_index is None:
            state.center_index = total - 1
        state.center_index = self._clamp_center(state.center_index - candle_delta, total)

    def navigate(
        self, direction: NavDirection, total: int, step: int | None = None
    ) -> None:
        """Move the view a fixed number of candles left or right."""
        if total <= 0:
            return
        step = self.config.navigation_step if step is None else step
        if step <= 0:
            return

        state = self._state
        if state.center_index is None:
            state.center_index = total - 1
        offset = -step if direction is NavDirection.LEFT else step
        state.center_index = self._clamp_center(state.center_index + offset, total)

    def navigate_left(self, total: int, step: int | None = None) -> None:
        self.navigate(NavDirection.LEFT, total, step)

    def navigate_right(self, total: int, step: int | None = None) -> None:
        self.navigate(NavDirection.RIGHT, total, step)

    def navigate_to_end(self) -> None:
        self._state.center_index = None

    def navigate_to_start(self) -> None:
        self._state.center_index = self._state.half_visible

    def set_visible_count(self, count: int, total: int) -> None:
        if count <= 0:
            return
        state = self._state
        count = self._clamp_count(count)
        if count == state.visible_count:
            return
        state.visible_count = count
        if state.center_index is not None and total > 0:
            state.center_index = self._clamp_center(state.center_index, total)

    def reset_zoom(self, count: int | None = None) -> None:
        """Return to auto-follow with ``count`` (or the configured default) candles."""
        if count is None or count <= 0:
            count = self.config.visible_count
        self._state.visible_count = self._clamp_count(count)
        self._state.center_index = None

    def focus(self, position: float, total: int) -> None:
        """Re-centre on a fractional position (0 = left edge, 1 = right edge)
        of the current window, e.g. under the cursor before a wheel zoom."""
        if total <= 0:
            return
        position = max(0.0, min(1.0, position))
        state = self._state
        if state.center_index is None:
            state.center_index = total - state.half_visible

        current_start = max(0, state.center_index - state.half_visible)
        current_end = min(total - 1, current_start + state.visible_count - 1)
        target = math.floor(current_start + position * (current_end - current_start))
        state.center_index = self._clamp_center(target, total)

    def check_and_follow(self, total: int) -> bool:
        """Resume auto-follow when a pinned view sits near the newest candle.

        Returns:
            True if the view switched back to auto-follow.
        """
        state = self._state
        if state.center_index is None:
            return False
        distance_from_end = total - 1 - state.center_index
        if distance_from_end <= state.half_visible:
            state.center_index = None
            logger.debug(f"[{self.name}] resumed auto-follow")
            return True
        return False
