"""Comment keys and annotation flags for candles."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import replace
from typing import Protocol

from core.clock import to_epoch_ms
from core.entities import Candle, ViewWindow
from core.periods import Period, PeriodCatalogue

__all__ = ["CommentLookup", "CommentBook", "candle_key", "annotate_window"]


class CommentLookup(Protocol):
    """Read access to stored candle comments."""

    def get_comment(self, key: str) -> str | None: ...


def candle_key(entity_id: str, period: str | Period, candle: Candle) -> str:
    """Stable comment key ``entity|period|anchor_ms`` for a candle.

    The anchor is the bucket start for fixed-interval periods and the display
    date for calendar-day candles, so keys survive rebuilds and reloads.

    Example:
        >>> candle_key("7", "1m", candle)
        '7|1m|1735689600000'
    """
    resolved = PeriodCatalogue.resolve(period)
    code = resolved.code if resolved is not None else str(period)
    if resolved is not None and resolved.is_fixed_interval:
        anchor = candle.period_start
    else:
        anchor = candle.display_at
    return f"{entity_id}|{code}|{to_epoch_ms(anchor)}"


def annotate_window(
    window: ViewWindow, entity_id: str, period: str | Period, comments: CommentLookup
) -> ViewWindow:
    """Return ``window`` with one flag per candle telling whether it has a comment."""
    flags = tuple(
        bool(comments.get_comment(candle_key(entity_id, period, candle)))
        for candle in window.candles
    )
    return replace(window, annotated=flags)


class CommentBook:
    """In-memory comment map keyed by ``candle_key``.

    Blank text deletes the comment.
    """

    def __init__(self, comments: Mapping[str, str] | None = None):
        self._comments: dict[str, str] = {}
        for key, text in (comments or {}).items():
            self.set_comment(key, text)

    def get_comment(self, key: str) -> str | None:
        return self._comments.get(key)

    def set_comment(self, key: str, text: str | None) -> None:
        text = (text or "").strip()
        if text:
            self._comments[key] = text
        else:
            self._comments.pop(key, None)

    def delete_comment(self, key: str) -> bool:
        return self._comments.pop(key, None) is not None

    def to_dict(self) -> dict[str, str]:
        return dict(self._comments)

    def __len__(self) -> int:
        return len(self._comments)

    def __iter__(self) -> Iterator[str]:
        return iter(self._comments)
