import enum
from sqlalchemy import Column, Integer, String, Text, Enum, UniqueConstraint
from sqlalchemy.sql import func

from .base import Base, JSONType, UTCDateTime


class WebhookStatus(str, enum.Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    RETRYING = "RETRYING"


class WebhookEvent(Base):
    """Idempotency and audit record for inbound webhooks, keyed by (source, event_id)"""
    __tablename__ = "webhook_events"

    id = Column(Integer, primary_key=True, index=True)
    source = Column(String(50), nullable=False, index=True)
    event_id = Column(String(255), nullable=True)
    event_type = Column(String(100), nullable=False, index=True)
    payload = Column(JSONType, nullable=False, default=dict)
    # Outcome of the unit of work, replayed for duplicate deliveries
    result = Column(JSONType, nullable=True)
    status = Column(Enum(WebhookStatus), nullable=False, default=WebhookStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    last_error = Column(Text, nullable=True)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    completed_at = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    __table_args__ = (
        UniqueConstraint("source", "event_id", name="uq_webhook_events_source_event_id"),
    )
