# pos_sync/domain/sync/schemas.py
import enum
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, Field

from pos_sync.core.errors import SyncError
from pos_sync.domain.entities.schemas import EntityBase, EntityKind, utcnow


class OperationType(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutboxEntry(BaseModel):
    """One pending mutation.

    `payload` is the full entity for a create, the patch for an update and
    `{"id": ...}` for a delete. `seq` is assigned by the queue on enqueue.
    """

    entry_id: str = Field(default_factory=lambda: str(uuid4()))
    seq: int = 0

    operation_type: OperationType
    entity_kind: EntityKind
    entity_id: str
    scope_id: str
    payload: Dict[str, Any]

    created_at: datetime = Field(default_factory=utcnow)
    attempts: int = 0
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None

    class Config:
        from_attributes = True


@dataclass
class MutationResult:
    """Outcome of a create/update/delete call.

    `entity` is what the cache shows after the call: the confirmed copy on
    success, the optimistic copy when queued, the restored copy (or None)
    after a rollback. Remote failures are carried in `error`, never raised.
    A sale that failed to reach the server is kept and queued: it is still
    `ok`, and `error` says why it was not sent.
    """

    entity: Optional[EntityBase] = None
    error: Optional[SyncError] = None
    queued: bool = False
    rolled_back: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None or self.queued

    def unwrap(self) -> Optional[EntityBase]:
        if not self.ok:
            raise self.error
        return self.entity


@dataclass
class ReplayReport:
    processed: int = 0
    remaining: int = 0
    halted: bool = False
    skipped: bool = False
    error: Optional[str] = None


class MutationOut(BaseModel):
    entity: Optional[Dict[str, Any]] = None
    queued: bool
    pending: int
    error: Optional[str] = None


class SyncStatusOut(BaseModel):
    online: bool
    pending: int
    replaying: bool
    last_error: Optional[str] = None
    last_replay_at: Optional[datetime] = None


class ReplayReportOut(BaseModel):
    processed: int
    remaining: int
    halted: bool
    skipped: bool
    error: Optional[str] = None

    class Config:
        from_attributes = True


class ConnectivityIn(BaseModel):
    online: bool
