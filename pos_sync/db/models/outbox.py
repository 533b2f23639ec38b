# pos_sync/db/models/outbox.py
from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from pos_sync.db.base import Base


class OutboxRecord(Base):
    __tablename__ = "outbox"

    """Pending mutation waiting to be replayed against the remote API.

    `seq` is assigned by the client and defines replay order. A row is
    deleted only once the remote call for it has succeeded; failed attempts
    bump `attempts` and keep the error text for diagnostics.
    """

    seq = Column(Integer, primary_key=True, autoincrement=False)
    entry_id = Column(String(36), unique=True, nullable=False, index=True)

    operation_type = Column(String, nullable=False)  # "create" | "update" | "delete"
    entity_kind = Column(String, nullable=False)
    entity_id = Column(String, nullable=False, index=True)
    scope_id = Column(String, nullable=False)

    payload = Column(JSON, nullable=False)

    created_at = Column(DateTime(timezone=True), nullable=False)
    attempts = Column(Integer, nullable=False, default=0)
    last_attempt_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)
