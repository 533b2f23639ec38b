
from datetime import datetime
from typing import Any, Dict, List

from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from pos_sync.db.models.outbox import OutboxRecord


async def list_outbox_records(db: AsyncSession) -> List[OutboxRecord]:
    result = await db.execute(select(OutboxRecord).order_by(OutboxRecord.seq))
    return list(result.scalars().all())


async def insert_outbox_record(db: AsyncSession, record: OutboxRecord) -> None:
    db.add(record)


async def delete_outbox_record(db: AsyncSession, entry_id: str) -> None:
    await db.execute(delete(OutboxRecord).where(OutboxRecord.entry_id == entry_id))


async def mark_outbox_attempt_failed(
    db: AsyncSession,
    entry_id: str,
    error: str,
    attempted_at: datetime,
) -> None:
    await db.execute(
        update(OutboxRecord)
        .where(OutboxRecord.entry_id == entry_id)
        .values(
            attempts=OutboxRecord.attempts + 1,
            last_attempt_at=attempted_at,
            last_error=error[:1000],
        )
    )


async def update_outbox_entity_ref(
    db: AsyncSession,
    entry_id: str,
    entity_id: str,
    payload: Dict[str, Any],
) -> None:
    await db.execute(
        update(OutboxRecord)
        .where(OutboxRecord.entry_id == entry_id)
        .values(entity_id=entity_id, payload=payload)
    )
