# pos_sync/domain/sync/outbox.py
import asyncio
import logging
from typing import List, Optional

from pos_sync.db.models.outbox import OutboxRecord
from pos_sync.db.repositories.outbox import (
    delete_outbox_record,
    insert_outbox_record,
    list_outbox_records,
    mark_outbox_attempt_failed,
    update_outbox_entity_ref,
)
from pos_sync.domain.entities.schemas import EntityKind, utcnow
from pos_sync.domain.sync.schemas import OutboxEntry

logger = logging.getLogger(__name__)


class OutboxQueue:
    """Durable FIFO of pending mutations.

    Entries are never reordered or coalesced: two updates to the same id
    are two entries. An entry leaves the queue only through `remove`,
    which the engine calls after the remote call for it succeeded.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory
        self._entries: List[OutboxEntry] = []
        self._next_seq = 1
        self._write_lock = asyncio.Lock()

    async def load(self) -> None:
        async with self._session_factory() as db:
            rows = await list_outbox_records(db)
        self._entries = [OutboxEntry.model_validate(row) for row in rows]
        if self._entries:
            self._next_seq = self._entries[-1].seq + 1
        logger.debug("loaded %d outbox entries", len(self._entries))

    async def enqueue(self, entry: OutboxEntry) -> OutboxEntry:
        entry = entry.model_copy(update={"seq": self._next_seq})
        self._next_seq += 1
        self._entries.append(entry)
        logger.info(
            "queued %s %s %s (pending=%d)",
            entry.operation_type.value,
            entry.entity_kind.value,
            entry.entity_id,
            len(self._entries),
        )

        async with self._write_lock:
            async with self._session_factory() as db:
                await insert_outbox_record(
                    db,
                    OutboxRecord(
                        seq=entry.seq,
                        entry_id=entry.entry_id,
                        operation_type=entry.operation_type.value,
                        entity_kind=entry.entity_kind.value,
                        entity_id=entry.entity_id,
                        scope_id=entry.scope_id,
                        payload=entry.payload,
                        created_at=entry.created_at,
                        attempts=entry.attempts,
                    ),
                )
                await db.commit()
        return entry

    def dequeue_next(self) -> Optional[OutboxEntry]:
        """Oldest entry, left in place."""
        return self._entries[0] if self._entries else None

    async def remove(self, entry_id: str) -> None:
        self._entries = [e for e in self._entries if e.entry_id != entry_id]

        async with self._write_lock:
            async with self._session_factory() as db:
                await delete_outbox_record(db, entry_id)
                await db.commit()

    def count(self) -> int:
        return len(self._entries)

    def entries(self) -> List[OutboxEntry]:
        return list(self._entries)

    def pending_for(self, kind: EntityKind, entity_id: str) -> List[OutboxEntry]:
        return [e for e in self._entries if e.entity_kind == kind and e.entity_id == entity_id]

    def has_pending(self, kind: EntityKind, entity_id: str) -> bool:
        return any(e.entity_kind == kind and e.entity_id == entity_id for e in self._entries)

    async def discard_for(self, kind: EntityKind, entity_id: str) -> List[OutboxEntry]:
        """Drop every queued entry for one entity, oldest first."""
        dropped = self.pending_for(kind, entity_id)
        if not dropped:
            return []
        dropped_ids = {e.entry_id for e in dropped}
        self._entries = [e for e in self._entries if e.entry_id not in dropped_ids]

        async with self._write_lock:
            async with self._session_factory() as db:
                for entry in dropped:
                    await delete_outbox_record(db, entry.entry_id)
                await db.commit()
        return dropped

    async def record_failure(self, entry_id: str, error: str) -> None:
        now = utcnow()
        for i, entry in enumerate(self._entries):
            if entry.entry_id == entry_id:
                self._entries[i] = entry.model_copy(
                    update={"attempts": entry.attempts + 1, "last_attempt_at": now, "last_error": error}
                )

        async with self._write_lock:
            async with self._session_factory() as db:
                await mark_outbox_attempt_failed(db, entry_id, error, now)
                await db.commit()

    async def rewrite_entity_id(self, kind: EntityKind, old_id: str, new_id: str) -> None:
        """Point queued entries for a temporary id at the server-assigned id."""
        rewritten = []
        for i, entry in enumerate(self._entries):
            if entry.entity_kind == kind and entry.entity_id == old_id:
                payload = dict(entry.payload)
                if "id" in payload:
                    payload["id"] = new_id
                self._entries[i] = entry.model_copy(update={"entity_id": new_id, "payload": payload})
                rewritten.append(self._entries[i])
        if not rewritten:
            return

        async with self._write_lock:
            async with self._session_factory() as db:
                for entry in rewritten:
                    await update_outbox_entity_ref(db, entry.entry_id, new_id, entry.payload)
                await db.commit()
