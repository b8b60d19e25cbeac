"""
In-memory direction repository.

Holds live directions and the trash (soft-deleted directions) that the chart
engine reads from. Persistence is left to the caller: the engine's
``on_mutated`` hook is the place to save a snapshot.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import datetime

from core.clock import Clock, get_clock, to_epoch_ms
from core.entities import Entity, ScoreEvent

logger = logging.getLogger(__name__)


class InMemoryEntityStore:
    """Dict-backed store of live and soft-deleted directions.

    Insertion order is preserved, so listings come back in the order the
    directions were created or imported.
    """

    def __init__(
        self,
        live: Iterable[Entity] = (),
        soft_deleted: Iterable[Entity] = (),
        clock: Clock | None = None,
    ):
        self._clock = clock
        self._live: dict[str, Entity] = {}
        self._trash: list[Entity] = []
        for entity in live:
            self.add(entity)
        self._trash.extend(soft_deleted)

    def _now(self) -> datetime:
        return (self._clock or get_clock()).now()

    # Read access used by the chart engine

    def list_live_entities(self) -> list[Entity]:
        return list(self._live.values())

    def list_soft_deleted_entities(self) -> list[Entity]:
        return list(self._trash)

    def get_entity(self, entity_id: str) -> Entity | None:
        return self._live.get(entity_id)

    def __len__(self) -> int:
        return len(self._live)

    def __contains__(self, entity_id: object) -> bool:
        return entity_id in self._live

    # Mutations

    def add(self, entity: Entity) -> Entity:
        if entity.id in self._live:
            raise ValueError(f"Direction {entity.id!r} already exists")
        if entity.created_at is None:
            entity.created_at = self._now()
        self._live[entity.id] = entity
        return entity

    def append_event(self, entity_id: str, event: ScoreEvent) -> bool:
        entity = self._live.get(entity_id)
        if entity is None:
            logger.warning(f"Cannot record score: unknown direction {entity_id!r}")
            return False
        entity.events.append(event)
        return True

    def clear_events(self, entity_id: str | None = None) -> None:
        """Drop the events of one live direction, or of every direction and the trash."""
        if entity_id is None:
            for entity in self._live.values():
                entity.events.clear()
            for entity in self._trash:
                entity.events.clear()
            logger.info("Cleared all score values")
            return

        entity = self._live.get(entity_id)
        if entity is not None:
            entity.events.clear()

    def soft_delete(self, entity_id: str) -> Entity | None:
        """Move a live direction to the trash. Its history keeps counting in the aggregate."""
        entity = self._live.pop(entity_id, None)
        if entity is None:
            return None
        entity.attributes["_deletedAt"] = to_epoch_ms(self._now())
        self._trash.append(entity)
        logger.debug(f"Moved direction {entity_id!r} to trash")
        return entity

    def restore(self, entity_id: str) -> Entity | None:
        """Move the most recently trashed direction with this id back to the live set."""
        for index in range(len(self._trash) - 1, -1, -1):
            entity = self._trash[index]
            if entity.id != entity_id:
                continue
            if entity_id in self._live:
                raise ValueError(f"Direction {entity_id!r} is already live")
            del self._trash[index]
            entity.attributes.pop("_deletedAt", None)
            self._live[entity_id] = entity
            return entity
        return None

    def purge(self, entity_id: str) -> int:
        """Permanently remove trashed directions with this id. Returns how many."""
        before = len(self._trash)
        self._trash = [entity for entity in self._trash if entity.id != entity_id]
        return before - len(self._trash)

    def replace_all(
        self, live: Iterable[Entity], soft_deleted: Iterable[Entity] = ()
    ) -> None:
        """Swap the whole content, e.g. after an import."""
        self._live.clear()
        self._trash = []
        for entity in live:
            self.add(entity)
        self._trash.extend(soft_deleted)
        logger.info(
            f"Store replaced: {len(self._live)} live, {len(self._trash)} trashed"
        )
