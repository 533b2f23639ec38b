# pos_sync/domain/sync/engine.py
import asyncio
import logging
from datetime import datetime
from functools import partialmethod
from typing import Any, Awaitable, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from pos_sync.core.errors import (
    EntityNotFoundError,
    EntityValidationError,
    RemoteError,
    RemoteTimeoutError,
)
from pos_sync.db.repositories.sync_cursors import get_sync_cursor, save_sync_cursor
from pos_sync.domain.entities.schemas import (
    IMMUTABLE_FIELDS,
    EntityBase,
    EntityKind,
    build_entity,
    dump_entity,
    is_temporary_id,
    merge_entity,
    new_temporary_id,
    utcnow,
)
from pos_sync.domain.sync.cache import LocalCacheStore
from pos_sync.domain.sync.connectivity import ConnectivityMonitor
from pos_sync.domain.sync.outbox import OutboxQueue
from pos_sync.domain.sync.schemas import MutationResult, OperationType, OutboxEntry, ReplayReport

logger = logging.getLogger(__name__)

# Sales are financial records: a failed dispatch keeps the local copy and
# queues it instead of rolling it back.
NO_ROLLBACK_KINDS = frozenset({EntityKind.TRANSACTION})

REPLAY_STREAM = "replay"


def apply_pending(
    kind: EntityKind,
    entity: Optional[EntityBase],
    entries: Iterable[OutboxEntry],
) -> Optional[EntityBase]:
    """Replay queued mutations for one entity on top of `entity`."""
    for entry in entries:
        if entry.operation_type == OperationType.CREATE:
            entity = build_entity(kind, entry.payload)
        elif entry.operation_type == OperationType.UPDATE:
            if entity is not None:
                entity = merge_entity(entity, entry.payload)
        else:
            entity = None
    return entity


class SyncEngine:
    """Keeps the local cache and the outbox consistent with each other.

    Every mutation is applied to the cache first. Online, it is then sent
    to the remote API and the cache is reconciled with the server copy or
    rolled back; offline, it is queued for replay. Local apply and
    reconcile steps run under one lock so callers never see a cache and
    outbox that disagree.
    """

    def __init__(
        self,
        cache: LocalCacheStore,
        outbox: OutboxQueue,
        remote,
        monitor: ConnectivityMonitor,
        session_factory,
        remote_timeout: float = 10.0,
    ):
        self.cache = cache
        self.outbox = outbox
        self.remote = remote
        self.monitor = monitor
        self.remote_timeout = remote_timeout
        self._session_factory = session_factory

        self._lock = asyncio.Lock()
        self._replaying = False
        self._replay_task: Optional[asyncio.Task] = None
        self._replay_again = False
        # optimistic creates whose remote call has not returned yet
        self._inflight: Dict[Tuple[EntityKind, str], EntityBase] = {}
        self.last_error: Optional[str] = None
        self.last_replay_at: Optional[datetime] = None

        self._unsubscribe = monitor.subscribe(self._on_connectivity_change)

    async def load(self) -> None:
        await self.cache.load()
        await self.outbox.load()
        async with self._session_factory() as db:
            cursor = await get_sync_cursor(db, REPLAY_STREAM)
        if cursor is not None:
            self.last_error = cursor.last_error
            self.last_replay_at = cursor.last_synced_at

    async def close(self) -> None:
        await self.wait_idle()
        self._unsubscribe()

    # reads

    @property
    def is_online(self) -> bool:
        return self.monitor.is_online

    @property
    def replaying(self) -> bool:
        return self._replaying

    def get_cached(self, kind: EntityKind, scope_id: str) -> List[EntityBase]:
        return self.cache.get(kind, scope_id)

    def pending_count(self) -> int:
        return self.outbox.count()

    def status(self) -> Dict[str, Any]:
        return {
            "online": self.is_online,
            "pending": self.pending_count(),
            "replaying": self._replaying,
            "last_error": self.last_error,
            "last_replay_at": self.last_replay_at,
        }

    # mutations

    async def create_entity(self, kind: EntityKind, scope_id: str, data: Mapping[str, Any]) -> MutationResult:
        kind = EntityKind(kind)
        now = utcnow()
        entity = build_entity(
            kind,
            {**data, "id": new_temporary_id(), "company_id": scope_id, "created_at": now, "updated_at": now},
        )
        payload = dump_entity(entity)

        async with self._lock:
            await self.cache.put(entity)
            if not self.monitor.is_online:
                await self._enqueue(OperationType.CREATE, kind, entity.id, scope_id, payload)
                return MutationResult(entity=entity, queued=True)
            self._inflight[(kind, entity.id)] = entity

        try:
            confirmed = await self._dispatch(OperationType.CREATE, kind, entity.id, payload)
        except RemoteError as exc:
            return await self._dispatch_failed(OperationType.CREATE, kind, entity.id, scope_id, None, payload, exc)

        async with self._lock:
            self._inflight.pop((kind, entity.id), None)
            await self._adopt_server_id(kind, entity.id, confirmed)
            follow_up = self.outbox.has_pending(kind, confirmed.id)
        if follow_up:
            # mutations issued while the create was in flight
            self._schedule_replay(again=True)
        return MutationResult(entity=confirmed)

    async def update_entity(self, kind: EntityKind, entity_id: str, patch: Mapping[str, Any]) -> MutationResult:
        kind = EntityKind(kind)

        async with self._lock:
            previous = self.cache.find(kind, entity_id)
            if previous is None:
                raise EntityNotFoundError(kind.value, entity_id)
            optimistic = merge_entity(previous, patch)
            dumped = dump_entity(optimistic)
            payload = {k: dumped[k] for k in patch if k not in IMMUTABLE_FIELDS and k in dumped}

            await self.cache.put(optimistic)
            if not self._can_dispatch(kind, entity_id):
                await self._enqueue(OperationType.UPDATE, kind, entity_id, previous.company_id, payload)
                return MutationResult(entity=optimistic, queued=True)

        try:
            confirmed = await self._dispatch(OperationType.UPDATE, kind, entity_id, payload)
        except RemoteError as exc:
            return await self._dispatch_failed(
                OperationType.UPDATE, kind, entity_id, previous.company_id, previous, payload, exc
            )

        async with self._lock:
            # the server copy overwrites the optimistic one, no field merge
            await self.cache.put(confirmed)
        return MutationResult(entity=confirmed)

    async def delete_entity(self, kind: EntityKind, entity_id: str) -> MutationResult:
        kind = EntityKind(kind)
        payload = {"id": entity_id}

        async with self._lock:
            previous = self.cache.find(kind, entity_id)
            if previous is None:
                raise EntityNotFoundError(kind.value, entity_id)

            await self.cache.remove(kind, entity_id)
            if not self._can_dispatch(kind, entity_id):
                await self._enqueue(OperationType.DELETE, kind, entity_id, previous.company_id, payload)
                return MutationResult(queued=True)

        try:
            await self._dispatch(OperationType.DELETE, kind, entity_id, payload)
        except RemoteError as exc:
            return await self._dispatch_failed(
                OperationType.DELETE, kind, entity_id, previous.company_id, previous, payload, exc
            )
        return MutationResult()

    create_product = partialmethod(create_entity, EntityKind.PRODUCT)
    update_product = partialmethod(update_entity, EntityKind.PRODUCT)
    delete_product = partialmethod(delete_entity, EntityKind.PRODUCT)

    create_customer = partialmethod(create_entity, EntityKind.CUSTOMER)
    update_customer = partialmethod(update_entity, EntityKind.CUSTOMER)
    delete_customer = partialmethod(delete_entity, EntityKind.CUSTOMER)

    create_employee = partialmethod(create_entity, EntityKind.EMPLOYEE)
    update_employee = partialmethod(update_entity, EntityKind.EMPLOYEE)
    delete_employee = partialmethod(delete_entity, EntityKind.EMPLOYEE)

    create_transaction = partialmethod(create_entity, EntityKind.TRANSACTION)
    update_transaction = partialmethod(update_entity, EntityKind.TRANSACTION)
    delete_transaction = partialmethod(delete_entity, EntityKind.TRANSACTION)

    def _can_dispatch(self, kind: EntityKind, entity_id: str) -> bool:
        # queued work for the same entity has to reach the server first
        if not self.monitor.is_online:
            return False
        return not is_temporary_id(entity_id) and not self.outbox.has_pending(kind, entity_id)

    async def _enqueue(
        self,
        operation: OperationType,
        kind: EntityKind,
        entity_id: str,
        scope_id: str,
        payload: Dict[str, Any],
    ) -> OutboxEntry:
        return await self.outbox.enqueue(
            OutboxEntry(
                operation_type=operation,
                entity_kind=kind,
                entity_id=entity_id,
                scope_id=scope_id,
                payload=payload,
            )
        )

    async def _dispatch_failed(
        self,
        operation: OperationType,
        kind: EntityKind,
        entity_id: str,
        scope_id: str,
        previous: Optional[EntityBase],
        payload: Dict[str, Any],
        exc: RemoteError,
    ) -> MutationResult:
        async with self._lock:
            follow_ups: List[OutboxEntry] = []
            if operation == OperationType.CREATE:
                self._inflight.pop((kind, entity_id), None)
                # entries queued against the temporary id while the create was in flight
                follow_ups = await self.outbox.discard_for(kind, entity_id)

            if kind in NO_ROLLBACK_KINDS:
                logger.warning(
                    "%s %s %s failed, keeping local copy for replay: %s",
                    operation.value, kind.value, entity_id, exc,
                )
                await self._enqueue(operation, kind, entity_id, scope_id, payload)
                for entry in follow_ups:
                    await self.outbox.enqueue(entry)
                return MutationResult(entity=self.cache.find(kind, entity_id), error=exc, queued=True)

            logger.warning("%s %s %s failed, rolling back: %s", operation.value, kind.value, entity_id, exc)
            if follow_ups:
                logger.warning("dropped %d queued mutations for %s %s", len(follow_ups), kind.value, entity_id)
            if operation == OperationType.CREATE:
                await self.cache.remove(kind, entity_id)
            else:
                await self.cache.put(previous)
            return MutationResult(entity=previous, error=exc, rolled_back=True)

    # remote calls

    async def _bounded(self, call: Awaitable, label: str):
        try:
            return await asyncio.wait_for(call, timeout=self.remote_timeout)
        except asyncio.TimeoutError as exc:
            raise RemoteTimeoutError(f"{label} timed out after {self.remote_timeout}s") from exc

    async def _dispatch(
        self,
        operation: OperationType,
        kind: EntityKind,
        entity_id: str,
        payload: Dict[str, Any],
    ) -> Optional[EntityBase]:
        label = f"{operation.value} {kind.value} {entity_id}"
        if operation == OperationType.CREATE:
            result = await self._bounded(self.remote.create(kind, payload), label)
        elif operation == OperationType.UPDATE:
            result = await self._bounded(self.remote.update(kind, entity_id, payload), label)
        else:
            deleted = await self._bounded(self.remote.delete(kind, entity_id), label)
            if not deleted:
                raise RemoteError(f"{label} was refused")
            return None

        if not isinstance(result, Mapping):
            raise RemoteError(f"{label} returned no entity")
        try:
            return build_entity(kind, result)
        except EntityValidationError as exc:
            raise RemoteError(f"{label} returned an invalid entity: {exc}") from exc

    # replay

    async def sync_now(self) -> ReplayReport:
        if self._replaying:
            logger.debug("replay already in progress, request ignored")
            return ReplayReport(skipped=True, remaining=self.outbox.count())
        if not self.monitor.is_online:
            return ReplayReport(skipped=True, remaining=self.outbox.count())

        self._replaying = True
        try:
            return await self._replay_pass()
        finally:
            self._replaying = False
            if self._replay_again and asyncio.current_task() is not self._replay_task:
                self._replay_again = False
                self._schedule_replay(again=True)

    async def _replay_pass(self) -> ReplayReport:
        logger.info("replaying outbox (%d pending)", self.outbox.count())
        report = ReplayReport()
        touched: Set[Tuple[EntityKind, str]] = set()

        while True:
            entry = self.outbox.dequeue_next()
            if entry is None:
                break
            if not self.monitor.is_online:
                report.halted = True
                break
            if (entry.entity_kind, entry.entity_id) in self._inflight:
                # waits for the create still in flight to hand over the server id
                report.halted = True
                break

            touched.add((entry.entity_kind, entry.scope_id))
            try:
                await self._replay_entry(entry)
            except RemoteError as exc:
                report.halted = True
                report.error = f"{entry.operation_type.value} {entry.entity_kind.value} {entry.entity_id}: {exc}"
                await self.outbox.record_failure(entry.entry_id, str(exc))
                logger.warning("replay halted at outbox entry %s: %s", entry.entry_id, report.error)
                break
            report.processed += 1

        if self.monitor.is_online:
            for kind, scope_id in sorted(touched):
                await self.refresh(kind, scope_id)

        report.remaining = self.outbox.count()
        self.last_error = report.error
        if report.error is None:
            self.last_replay_at = utcnow()
        await self._record_cursor(
            REPLAY_STREAM,
            report.error,
            {"processed": report.processed, "remaining": report.remaining},
        )
        logger.info(
            "replay finished: processed=%d remaining=%d halted=%s",
            report.processed, report.remaining, report.halted,
        )
        return report

    async def _replay_entry(self, entry: OutboxEntry) -> None:
        kind = entry.entity_kind
        confirmed = await self._dispatch(entry.operation_type, kind, entry.entity_id, entry.payload)

        async with self._lock:
            await self.outbox.remove(entry.entry_id)

            if entry.operation_type == OperationType.CREATE:
                await self._adopt_server_id(kind, entry.entity_id, confirmed)
            elif entry.operation_type == OperationType.UPDATE:
                rebased = apply_pending(kind, confirmed, self.outbox.pending_for(kind, entry.entity_id))
                if rebased is None:
                    await self.cache.remove(kind, entry.entity_id)
                else:
                    await self.cache.put(rebased)
            elif not self.outbox.has_pending(kind, entry.entity_id):
                await self.cache.remove(kind, entry.entity_id)

    async def _adopt_server_id(self, kind: EntityKind, temporary_id: str, confirmed: EntityBase) -> None:
        """Swap a confirmed create into the cache; caller holds the lock.

        Entries queued against the temporary id are pointed at the server id
        and re-applied on top of the server copy, so the temporary id never
        survives next to the server id.
        """
        if confirmed.id != temporary_id:
            await self.outbox.rewrite_entity_id(kind, temporary_id, confirmed.id)
        rebased = apply_pending(kind, confirmed, self.outbox.pending_for(kind, confirmed.id))
        await self.cache.swap(kind, temporary_id, rebased)

    async def refresh(self, kind: EntityKind, scope_id: str) -> bool:
        """Replace the cached collection with the server's, keeping queued work on top."""
        kind = EntityKind(kind)
        stream = f"{kind.value}:{scope_id}"
        try:
            rows = await self._bounded(self.remote.list(kind, scope_id), f"list {kind.value}")
            server = [build_entity(kind, row) for row in rows]
        except (RemoteError, EntityValidationError) as exc:
            logger.warning("refetch of %s for %s failed: %s", kind.value, scope_id, exc)
            await self._record_cursor(stream, str(exc))
            return False

        async with self._lock:
            entities = self._overlay_pending(kind, scope_id, [e for e in server if e.company_id == scope_id])
            await self.cache.replace_all(kind, scope_id, entities)
        await self._record_cursor(stream, None, {"count": len(entities)})
        return True

    async def refresh_all(self, scope_id: str) -> Dict[EntityKind, bool]:
        return {kind: await self.refresh(kind, scope_id) for kind in EntityKind}

    def _overlay_pending(self, kind: EntityKind, scope_id: str, server: List[EntityBase]) -> List[EntityBase]:
        by_id = {e.id: e for e in server}
        for (inflight_kind, entity_id), entity in self._inflight.items():
            if inflight_kind == kind and entity.company_id == scope_id:
                by_id.setdefault(entity_id, entity)
        entity_ids = dict.fromkeys(
            e.entity_id for e in self.outbox.entries() if e.entity_kind == kind and e.scope_id == scope_id
        )
        for entity_id in entity_ids:
            rebased = apply_pending(kind, by_id.get(entity_id), self.outbox.pending_for(kind, entity_id))
            if rebased is None:
                by_id.pop(entity_id, None)
            else:
                by_id[entity_id] = rebased
        return list(by_id.values())

    async def _record_cursor(self, stream: str, error: Optional[str], details: Optional[Dict[str, Any]] = None) -> None:
        async with self._session_factory() as db:
            await save_sync_cursor(db, stream, utcnow(), error=error, details=details)
            await db.commit()

    # connectivity

    def _on_connectivity_change(self, online: bool) -> None:
        if online:
            self._schedule_replay()

    def _schedule_replay(self, again: bool = False) -> None:
        """Start a background replay pass unless one is running.

        With `again`, a pass that is already running is followed by another
        one, for entries it may have stopped short of.
        """
        if not self.monitor.is_online:
            return
        if self._replaying or (self._replay_task is not None and not self._replay_task.done()):
            self._replay_again = self._replay_again or again
            return
        self._replay_task = asyncio.get_running_loop().create_task(self.sync_now())
        self._replay_task.add_done_callback(self._replay_done)

    def _replay_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            logger.error("replay pass crashed", exc_info=task.exception())
        if self._replay_again:
            self._replay_again = False
            self._schedule_replay(again=True)

    async def wait_idle(self) -> None:
        """Wait for background replay passes to finish."""
        task = self._replay_task
        while task is not None and not task.done():
            await asyncio.wait({task})
            task = self._replay_task
