
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import select

from pos_sync.db.models.sync_cursors import SyncCursor


async def get_sync_cursor(db: AsyncSession, stream_name: str) -> Optional[SyncCursor]:
    result = await db.execute(
        select(SyncCursor).where(SyncCursor.stream_name == stream_name)
    )
    return result.scalar_one_or_none()


async def save_sync_cursor(
    db: AsyncSession,
    stream_name: str,
    synced_at: datetime,
    error: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> SyncCursor:
    cursor = await get_sync_cursor(db, stream_name)
    if cursor is None:
        cursor = SyncCursor(stream_name=stream_name)
        db.add(cursor)

    # a failed run keeps the previous successful timestamp
    if error is None:
        cursor.last_synced_at = synced_at
    cursor.last_error = error
    cursor.details = details
    return cursor
