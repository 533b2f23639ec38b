
from typing import Any, Dict, Iterable, List

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from pos_sync.db.models.local_cache import CachedEntity


async def list_cached_entities(db: AsyncSession) -> List[CachedEntity]:
    result = await db.execute(select(CachedEntity))
    return list(result.scalars().all())


async def upsert_cached_entity(
    db: AsyncSession,
    entity_kind: str,
    entity_id: str,
    scope_id: str,
    data: Dict[str, Any],
) -> None:
    await db.merge(
        CachedEntity(
            entity_kind=entity_kind,
            entity_id=entity_id,
            scope_id=scope_id,
            data=data,
        )
    )


async def delete_cached_entity(db: AsyncSession, entity_kind: str, entity_id: str) -> None:
    await db.execute(
        delete(CachedEntity).where(
            CachedEntity.entity_kind == entity_kind,
            CachedEntity.entity_id == entity_id,
        )
    )


async def replace_cached_scope(
    db: AsyncSession,
    entity_kind: str,
    scope_id: str,
    rows: Iterable[Dict[str, Any]],
) -> None:
    await db.execute(
        delete(CachedEntity).where(
            CachedEntity.entity_kind == entity_kind,
            CachedEntity.scope_id == scope_id,
        )
    )
    for data in rows:
        # an id may move between scopes; merge keeps the primary key unique
        await db.merge(
            CachedEntity(
                entity_kind=entity_kind,
                entity_id=data["id"],
                scope_id=scope_id,
                data=data,
            )
        )
