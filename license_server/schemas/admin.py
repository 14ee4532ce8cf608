from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import Optional, Any, Dict
from license_server.models.email_queue import EmailStatus


class ProcessQueueRequest(BaseModel):
    limit: int = Field(10, ge=1, le=100)


class ProcessQueueResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int


class EmailQueueItemResponse(BaseModel):
    id: int
    to_address: str
    subject: str
    status: EmailStatus
    attempts: int
    max_attempts: int
    next_retry_at: Optional[datetime] = None
    last_attempt_at: Optional[datetime] = None
    last_error: Optional[str] = None
    message_id: Optional[str] = None
    sent_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("email_metadata", "metadata")
    )
    created_at: datetime

    class Config:
        from_attributes = True


class EmailQueueStatsResponse(BaseModel):
    pending: int = 0
    sending: int = 0
    sent: int = 0
    retrying: int = 0
    failed: int = 0
    total: int = 0
