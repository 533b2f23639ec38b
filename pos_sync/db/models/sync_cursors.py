# pos_sync/db/models/sync_cursors.py
from uuid import uuid4

from sqlalchemy import JSON, Column, DateTime, String, Text
from sqlalchemy.sql import func

from pos_sync.db.base import Base


class SyncCursor(Base):
    __tablename__ = "sync_cursors"

    """Tracks the outcome of the last run of a named sync stream.

    The "replay" stream records outbox replay passes; "<kind>:<scope>"
    streams record refetches of authoritative collections.
    """

    id = Column(String(36), primary_key=True, default=lambda: str(uuid4()))
    stream_name = Column(String, nullable=False, unique=True)

    last_synced_at = Column(DateTime(timezone=True), nullable=True)
    last_error = Column(Text, nullable=True)

    details = Column(JSON, nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())
