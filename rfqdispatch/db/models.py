"""
SQLAlchemy ORM models owned by the dispatch engine.

Only the ops event log is persisted here; destinations, messages and supplier
profiles are read from stores owned by other subsystems.
"""
import uuid

from sqlalchemy import Column, String, DateTime, JSON, Index
from sqlalchemy.sql import func

from rfqdispatch.db.session import Base

OPS_EVENTS_TABLE = "ops_events"


def _new_event_id() -> str:
    return str(uuid.uuid4())


# ============= OPS EVENTS =============

class OpsEventRecord(Base):
    """Append-only domain event used for idempotency checks and audit."""
    __tablename__ = OPS_EVENTS_TABLE

    id = Column(String(36), primary_key=True, default=_new_event_id)
    quote_id = Column(String(64), nullable=False, index=True)
    destination_id = Column(String(64), nullable=True)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSON, nullable=False, default=dict)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (
        Index('ix_ops_events_quote_created', 'quote_id', 'created_at'),
    )
