from datetime import UTC, datetime, timedelta

from core.entities import Entity, ScoreEvent

# 2025-01-01 00:00:00 UTC, aligned to every fixed period up to one day
BASE_TIME = datetime(2025, 1, 1, tzinfo=UTC)
BASE_MS = 1_735_689_600_000


def at(seconds: float = 0, base: datetime = BASE_TIME) -> datetime:
    """Instant ``seconds`` after the base time."""
    return base + timedelta(seconds=seconds)


def create_events(
    values_and_offsets: list[tuple[float, float]], base: datetime = BASE_TIME
) -> list[ScoreEvent]:
    """Create score events from ``(value, seconds_after_base)`` pairs."""
    return [
        ScoreEvent(value=value, occurred_at=at(offset, base))
        for value, offset in values_and_offsets
    ]


def create_entity(
    entity_id: str,
    values_and_offsets: list[tuple[float, float]] = (),
    name: str | None = None,
    base: datetime = BASE_TIME,
) -> Entity:
    """Create a direction with events at the given offsets."""
    return Entity(
        id=entity_id,
        name=name or f"Direction {entity_id}",
        events=create_events(list(values_and_offsets), base),
        created_at=base,
    )


def create_minute_series_events(count: int, value: float = 1.0) -> list[ScoreEvent]:
    """One event per minute for ``count`` minutes, starting at the base time."""
    return [
        ScoreEvent(value=value, occurred_at=at(60 * i + 5)) for i in range(count)
    ]


def create_payload(directions: list[dict], **extra) -> dict:
    """Minimal import payload around raw direction dicts."""
    data = {"directions": directions}
    data.update(extra)
    return {"version": "1.1", "exportDate": "2025-01-01T00:00:00.000Z", "productivityData": data}


def raw_direction(
    entity_id: str, scores: list[tuple[float, str]], name: str = "Reading"
) -> dict:
    """Raw backup-format direction with ``(value, iso_date)`` scores."""
    return {
        "id": entity_id,
        "name": name,
        "createdAt": "2024-12-31T00:00:00.000Z",
        "scores": [{"value": value, "date": date} for value, date in scores],
    }
