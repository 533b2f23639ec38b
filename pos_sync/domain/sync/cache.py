# pos_sync/domain/sync/cache.py
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from pos_sync.db.repositories.cache import (
    delete_cached_entity,
    list_cached_entities,
    replace_cached_scope,
    upsert_cached_entity,
)
from pos_sync.domain.entities.schemas import (
    EntityBase,
    EntityKind,
    build_entity,
    dump_entity,
    kind_of,
)

logger = logging.getLogger(__name__)

ChangeListener = Callable[[EntityKind, str], None]


class LocalCacheStore:
    """Client-side mirror of entity collections, scoped by company.

    Reads are served from memory. Every mutation changes the in-memory
    mirror before its first await and is then written through to the
    database, so a put/remove/replace is never observed half-applied.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._entities: Dict[EntityKind, Dict[str, EntityBase]] = {kind: {} for kind in EntityKind}
        self._write_lock = asyncio.Lock()
        self._listeners: List[ChangeListener] = []

    async def load(self) -> None:
        async with self._session_factory() as db:
            rows = await list_cached_entities(db)
        for row in rows:
            kind = EntityKind(row.entity_kind)
            self._entities[kind][row.entity_id] = build_entity(kind, row.data)
        logger.debug("loaded %d cached entities", len(rows))

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        self._listeners.append(listener)
        return lambda: self._listeners.remove(listener)

    def get(self, kind: EntityKind, scope_id: str) -> List[EntityBase]:
        return [e for e in self._entities[EntityKind(kind)].values() if e.company_id == scope_id]

    def find(self, kind: EntityKind, entity_id: str) -> Optional[EntityBase]:
        return self._entities[EntityKind(kind)].get(entity_id)

    async def put(self, entity: EntityBase) -> None:
        kind = kind_of(entity)
        self._entities[kind][entity.id] = entity
        self._notify(kind, entity.company_id)

        async with self._write_lock:
            async with self._session_factory() as db:
                await upsert_cached_entity(db, kind.value, entity.id, entity.company_id, dump_entity(entity))
                await db.commit()

    async def remove(self, kind: EntityKind, entity_id: str) -> None:
        kind = EntityKind(kind)
        removed = self._entities[kind].pop(entity_id, None)
        if removed is None:
            return
        self._notify(kind, removed.company_id)

        async with self._write_lock:
            async with self._session_factory() as db:
                await delete_cached_entity(db, kind.value, entity_id)
                await db.commit()

    async def swap(self, kind: EntityKind, old_id: str, entity: Optional[EntityBase]) -> None:
        """Drop `old_id` and insert `entity` in one step.

        Used when a temporary id is replaced by the server-assigned one: the
        two copies are never both visible.
        """
        kind = EntityKind(kind)
        removed = self._entities[kind].pop(old_id, None)
        if entity is not None:
            self._entities[kind][entity.id] = entity
        scopes = {e.company_id for e in (removed, entity) if e is not None}
        for scope_id in scopes:
            self._notify(kind, scope_id)

        async with self._write_lock:
            async with self._session_factory() as db:
                await delete_cached_entity(db, kind.value, old_id)
                if entity is not None:
                    await upsert_cached_entity(db, kind.value, entity.id, entity.company_id, dump_entity(entity))
                await db.commit()

    async def replace_all(self, kind: EntityKind, scope_id: str, entities: Iterable[EntityBase]) -> None:
        kind = EntityKind(kind)
        entities = list(entities)
        bucket = self._entities[kind]
        for entity_id in [i for i, e in bucket.items() if e.company_id == scope_id]:
            del bucket[entity_id]
        for entity in entities:
            bucket[entity.id] = entity
        self._notify(kind, scope_id)

        async with self._write_lock:
            async with self._session_factory() as db:
                await replace_cached_scope(db, kind.value, scope_id, [dump_entity(e) for e in entities])
                await db.commit()

    def snapshot(self) -> Dict[Tuple[EntityKind, str], EntityBase]:
        return {(kind, i): e for kind, bucket in self._entities.items() for i, e in bucket.items()}

    def _notify(self, kind: EntityKind, scope_id: str) -> None:
        for listener in list(self._listeners):
            try:
                listener(kind, scope_id)
            except Exception:
                logger.exception("cache listener failed for %s/%s", kind.value, scope_id)
