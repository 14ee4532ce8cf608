import enum
from sqlalchemy import Column, Integer, String, Text, Enum
from sqlalchemy.sql import func

from .base import Base, JSONType, UTCDateTime


class EmailStatus(str, enum.Enum):
    PENDING = "PENDING"
    SENDING = "SENDING"
    SENT = "SENT"
    RETRYING = "RETRYING"
    FAILED = "FAILED"


class EmailQueueItem(Base):
    """Durable outbox row; only the email queue service mutates it after creation"""
    __tablename__ = "email_queue"

    id = Column(Integer, primary_key=True, index=True)
    to_address = Column(String(255), nullable=False, index=True)
    subject = Column(String(500), nullable=False)
    text_content = Column(Text, nullable=False)
    html_content = Column(Text, nullable=False)
    status = Column(Enum(EmailStatus), nullable=False, default=EmailStatus.PENDING, index=True)
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=5)
    next_retry_at = Column(UTCDateTime, nullable=True, index=True)
    last_attempt_at = Column(UTCDateTime, nullable=True)
    last_error = Column(Text, nullable=True)
    message_id = Column(String(255), nullable=True)
    sent_at = Column(UTCDateTime, nullable=True)
    email_metadata = Column("metadata", JSONType, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False, index=True)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)
