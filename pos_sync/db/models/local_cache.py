# pos_sync/db/models/local_cache.py
from sqlalchemy import JSON, Column, DateTime, Index, String
from sqlalchemy.sql import func

from pos_sync.db.base import Base


class CachedEntity(Base):
    __tablename__ = "cached_entities"

    """Latest known copy of a product, customer, employee or transaction.

    Rows are keyed by (entity_kind, entity_id) and scoped by company. The
    full entity is kept as JSON so the row survives schema changes of the
    upstream representation; confirmed and optimistic copies look the same.
    """

    entity_kind = Column(String, primary_key=True)
    entity_id = Column(String, primary_key=True)
    scope_id = Column(String, nullable=False)

    data = Column(JSON, nullable=False)

    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("ix_cached_entities_kind_scope", "entity_kind", "scope_id"),
    )
