"""
Tracker data import/export and tabular series export.

This module reads and writes the JSON backup format of the tracker
(``{"version", "exportDate", "productivityData": {...}}``), validates imports
before anything is replaced, and converts candle series to pandas DataFrames
for CSV export and analysis.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

import numpy as np
import pandas as pd

from core.chart.annotations import CommentBook
from core.chart.engine import ChartEngine
from core.clock import from_epoch_ms, get_clock
from core.entities import Entity, ScoreEvent, Series
from services.repository import InMemoryEntityStore

logger = logging.getLogger(__name__)

EXPORT_VERSION = "1.1"

# Direction keys handled explicitly; everything else round-trips via attributes
_DIRECTION_KEYS = {"id", "name", "createdAt", "scores", "totalScore"}
_SCORE_KEYS = {"value", "date", "timestamp"}


class ImportValidationError(ValueError):
    """Raised when an import payload does not have the expected structure."""


@dataclass
class TrackerSnapshot:
    """Everything the tracker persists, in engine types."""

    directions: list[Entity] = field(default_factory=list)
    trash: list[Entity] = field(default_factory=list)
    comments: dict[str, str] = field(default_factory=dict)
    visible_count: int | None = None
    # Payload sections the engine does not interpret (categories, layoutMode, ...)
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def event_count(self) -> int:
        return sum(len(entity.events) for entity in self.directions)


def parse_datetime(value: Any) -> datetime:
    """Parse an ISO date string or epoch milliseconds into an aware UTC datetime."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid date: {value!r}")
    if isinstance(value, int | float):
        return from_epoch_ms(int(value))
    if not isinstance(value, str) or not value:
        raise ValueError(f"Invalid date: {value!r}")

    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def format_datetime(ts: datetime) -> str:
    """ISO-8601 with milliseconds and a ``Z`` suffix."""
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=UTC)
    return ts.astimezone(UTC).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def validate_import_data(data: Any) -> None:
    """Check the structure of an import payload.

    Directions are required; every other section is optional.

    Raises:
        ImportValidationError: Naming the first offending entry.
    """
    if not isinstance(data, dict):
        raise ImportValidationError("Import data must be a JSON object")
    payload = data.get("productivityData")
    if not isinstance(payload, dict):
        raise ImportValidationError("Missing 'productivityData' object")

    directions = payload.get("directions")
    if not isinstance(directions, list):
        raise ImportValidationError("'productivityData.directions' must be a list")

    seen: set[str] = set()
    for index, direction in enumerate(directions):
        where = f"directions[{index}]"
        if not isinstance(direction, dict):
            raise ImportValidationError(f"{where} must be an object")
        for key in ("id", "name", "createdAt"):
            if not direction.get(key):
                raise ImportValidationError(f"{where} is missing '{key}'")
        if str(direction["id"]) in seen:
            raise ImportValidationError(f"{where} duplicates id {direction['id']!r}")
        seen.add(str(direction["id"]))

        scores = direction.get("scores")
        if not isinstance(scores, list):
            raise ImportValidationError(f"{where}.scores must be a list")
        for score_index, score in enumerate(scores):
            score_where = f"{where}.scores[{score_index}]"
            if not isinstance(score, dict):
                raise ImportValidationError(f"{score_where} must be an object")
            value = score.get("value")
            if isinstance(value, bool) or not isinstance(value, int | float):
                raise ImportValidationError(f"{score_where}.value must be a number")
            if not score.get("date"):
                raise ImportValidationError(f"{score_where} is missing 'date'")


def _parse_entity(raw: dict[str, Any]) -> Entity:
    events: list[ScoreEvent] = []
    for score in raw.get("scores") or []:
        value = float(score["value"])
        if not math.isfinite(value):
            raise ImportValidationError(f"Non-finite score value in {raw['id']!r}")
        try:
            occurred_at = parse_datetime(score["date"])
        except ValueError as e:
            raise ImportValidationError(
                f"Invalid score date in direction {raw['id']!r}: {e}"
            ) from e
        metadata = {k: v for k, v in score.items() if k not in _SCORE_KEYS}
        events.append(
            ScoreEvent(value=value, occurred_at=occurred_at, metadata=metadata or None)
        )

    created_at = raw.get("createdAt")
    try:
        created = parse_datetime(created_at) if created_at else None
    except ValueError as e:
        raise ImportValidationError(f"Invalid createdAt in {raw['id']!r}: {e}") from e

    return Entity(
        id=str(raw["id"]),
        name=str(raw["name"]),
        events=events,
        created_at=created,
        attributes={k: v for k, v in raw.items() if k not in _DIRECTION_KEYS},
    )


def parse_snapshot(data: Any) -> TrackerSnapshot:
    """Validate an import payload and convert it to engine types."""
    validate_import_data(data)
    payload = data["productivityData"]

    directions = [_parse_entity(raw) for raw in payload["directions"]]

    trash: list[Entity] = []
    extras: dict[str, Any] = {}
    raw_trash = payload.get("trash")
    if isinstance(raw_trash, dict):
        for raw in raw_trash.get("directions") or []:
            try:
                trash.append(_parse_entity(raw))
            except (AttributeError, KeyError, TypeError, ValueError) as e:
                logger.warning(f"Skipping malformed trashed direction: {e}")
        if raw_trash.get("categories"):
            extras["trash_categories"] = raw_trash["categories"]

    comments = payload.get("comments")
    comments = (
        {str(k): str(v) for k, v in comments.items() if v}
        if isinstance(comments, dict)
        else {}
    )

    visible_count = None
    zoom_state = payload.get("zoomState")
    if isinstance(zoom_state, dict):
        count = zoom_state.get("visibleCandlesCount")
        if isinstance(count, int) and not isinstance(count, bool) and count > 0:
            visible_count = count

    for key in ("categories", "layoutMode"):
        if key in payload:
            extras[key] = payload[key]

    return TrackerSnapshot(
        directions=directions,
        trash=trash,
        comments=comments,
        visible_count=visible_count,
        extras=extras,
    )


def load_snapshot(path: str | Path) -> TrackerSnapshot:
    """Load a JSON backup file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ImportValidationError: If the file is not valid JSON or fails validation.
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Data file not found: {path}")

    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as e:
        raise ImportValidationError(f"Invalid JSON in {path}: {e}") from e

    snapshot = parse_snapshot(data)
    logger.info(
        f"Loaded {len(snapshot.directions)} directions "
        f"({snapshot.event_count} scores) from {path}"
    )
    return snapshot


def _entity_to_dict(entity: Entity) -> dict[str, Any]:
    scores = []
    for event in entity.events:
        score = {
            "value": event.value,
            "date": format_datetime(event.occurred_at),
            "timestamp": event.occurred_ms,
        }
        if event.metadata:
            score.update(event.metadata)
        scores.append(score)

    created_at = entity.created_at or get_clock().now()
    return {
        "id": entity.id,
        "name": entity.name,
        "createdAt": format_datetime(created_at),
        "scores": scores,
        "totalScore": entity.total,
        **entity.attributes,
    }


def build_export_payload(
    snapshot: TrackerSnapshot, export_date: datetime | None = None
) -> dict[str, Any]:
    """Build the JSON-ready backup structure for a snapshot."""
    export_date = export_date or get_clock().now()
    data: dict[str, Any] = {
        "directions": [_entity_to_dict(entity) for entity in snapshot.directions],
        "categories": snapshot.extras.get("categories", []),
        "trash": {
            "directions": [_entity_to_dict(entity) for entity in snapshot.trash],
            "categories": snapshot.extras.get("trash_categories", []),
        },
        "comments": dict(snapshot.comments),
        "zoomState": {"visibleCandlesCount": snapshot.visible_count or 50},
    }
    if "layoutMode" in snapshot.extras:
        data["layoutMode"] = snapshot.extras["layoutMode"]

    return {
        "version": EXPORT_VERSION,
        "exportDate": format_datetime(export_date),
        "productivityData": data,
    }


def save_snapshot(snapshot: TrackerSnapshot, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(build_export_payload(snapshot), f, indent=2, ensure_ascii=False)
    logger.info(f"Exported {len(snapshot.directions)} directions to {path}")
    return path


def snapshot_from(
    store: InMemoryEntityStore,
    comments: CommentBook | None = None,
    engine: ChartEngine | None = None,
    extras: dict[str, Any] | None = None,
) -> TrackerSnapshot:
    """Capture the current store (and primary zoom level) as a snapshot."""
    return TrackerSnapshot(
        directions=store.list_live_entities(),
        trash=store.list_soft_deleted_entities(),
        comments=comments.to_dict() if comments is not None else {},
        visible_count=(
            engine.primary.viewport.state.visible_count if engine is not None else None
        ),
        extras=dict(extras or {}),
    )


def apply_snapshot(
    snapshot: TrackerSnapshot,
    store: InMemoryEntityStore,
    engine: ChartEngine,
    comments: CommentBook | None = None,
) -> None:
    """Replace all tracker state with an imported snapshot.

    Both charts return to auto-follow, the saved zoom level is restored on the
    primary chart, and every cached series is dropped.
    """
    store.replace_all(snapshot.directions, snapshot.trash)
    if comments is not None:
        for key in list(comments):
            comments.delete_comment(key)
        for key, text in snapshot.comments.items():
            comments.set_comment(key, text)

    engine.reset_zoom(
        snapshot.visible_count or engine.primary.viewport.state.visible_count
    )
    engine.navigate_to_end(chart="aggregate")
    engine.invalidate_all()
    logger.info(f"Import applied: {len(snapshot.directions)} directions")


def series_to_frame(series: Series) -> pd.DataFrame:
    """One row per candle, oldest first.

    ``direction`` is +1 for rising candles, -1 for falling ones and 0 for
    flat candles (renderer colouring).
    """
    columns = [
        "period_start",
        "period_end",
        "display_at",
        "open",
        "high",
        "low",
        "close",
        "event_count",
        "is_active",
    ]
    frame = pd.DataFrame(
        [
            (
                candle.period_start,
                candle.period_end,
                candle.display_at,
                candle.open,
                candle.high,
                candle.low,
                candle.close,
                candle.event_count,
                candle.is_active,
            )
            for candle in series.candles
        ],
        columns=columns,
    )
    for column in ("period_start", "period_end", "display_at"):
        frame[column] = pd.to_datetime(frame[column], utc=True)

    frame["change"] = frame["close"] - frame["open"]
    frame["direction"] = np.sign(frame["change"].to_numpy()).astype(int)
    frame.attrs["entity_id"] = series.entity_id
    frame.attrs["period"] = series.period.code
    return frame

