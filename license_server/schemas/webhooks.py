from pydantic import BaseModel
from datetime import datetime
from typing import Optional, Any, Dict
from license_server.models.webhook_event import WebhookStatus


class PaddleWebhookResponse(BaseModel):
    """Handler result merged into the acknowledgement - shape varies per event type"""
    success: bool = True
    message: Optional[str] = None
    is_new_event: Optional[bool] = None

    class Config:
        extra = "allow"


class WebhookEventResponse(BaseModel):
    id: int
    source: str
    event_id: Optional[str] = None
    event_type: str
    status: WebhookStatus
    attempts: int
    last_error: Optional[str] = None
    last_attempt_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class WebhookStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    retrying: int = 0
    total: int = 0


class WebhookRetryResponse(BaseModel):
    success: bool
    webhook: WebhookEventResponse
    replayed: bool = False
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
