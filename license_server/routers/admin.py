"""
Operator endpoints for the email outbox and the webhook log - admin only.
"""
import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from license_server.auth.dependencies import require_admin_token
from license_server.config import settings
from license_server.database import get_db, get_session_factory
from license_server.exceptions import WebhookError
from license_server.integrations.mailgun import get_email_transport
from license_server.schemas.admin import (
    ProcessQueueRequest,
    ProcessQueueResponse,
    EmailQueueItemResponse,
    EmailQueueStatsResponse,
)
from license_server.schemas.webhooks import (
    WebhookEventResponse,
    WebhookStatsResponse,
    WebhookRetryResponse,
)
from license_server.services import email_queue, webhooks
from license_server.services.purchases import replay_webhook

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])

admin_only = require_admin_token


# ---------------------------------------------------------------------------
# Email queue
# ---------------------------------------------------------------------------


@router.post("/email-queue/process", response_model=ProcessQueueResponse)
def process_email_queue(
    data: Optional[ProcessQueueRequest] = None,
    session_factory=Depends(get_session_factory),
    transport=Depends(get_email_transport),
    _: None = Depends(admin_only),
):
    """Run one sweep now instead of waiting for the next scheduled one."""
    limit = data.limit if data else settings.email_queue_batch_size
    return email_queue.process_pending_emails(
        session_factory, transport, limit=limit, max_workers=settings.email_queue_workers
    )


@router.get("/email-queue/failed", response_model=List[EmailQueueItemResponse])
def list_failed_emails(
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    return email_queue.list_failed_emails(db, limit=limit)


@router.post("/email-queue/{email_id}/retry", response_model=EmailQueueItemResponse)
def retry_email(
    email_id: int,
    db: Session = Depends(get_db),
    transport=Depends(get_email_transport),
    _: None = Depends(admin_only),
):
    try:
        return email_queue.retry_failed_email(db, email_id, transport)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("/email-queue/stats", response_model=EmailQueueStatsResponse)
def email_queue_stats(
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    return email_queue.email_queue_stats(db)


# ---------------------------------------------------------------------------
# Webhooks
# ---------------------------------------------------------------------------


@router.get("/webhooks/failed", response_model=List[WebhookEventResponse])
def list_failed_webhooks(
    source: Optional[str] = None,
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    return webhooks.list_failed_webhooks(db, source=source, limit=limit)


@router.post("/webhooks/{webhook_id}/retry", response_model=WebhookRetryResponse)
def retry_webhook(
    webhook_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    """
    Reset a FAILED webhook and replay it from its stored payload.

    The reset sticks even if the replay fails again; the replay outcome is
    reported in the body rather than as an HTTP error.
    """
    try:
        event = webhooks.reset_webhook_for_retry(db, webhook_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    try:
        result = replay_webhook(db, webhook_id)
    except Exception as e:
        db.rollback()
        if isinstance(e, (WebhookError, ValueError)):
            logger.warning("Replay of webhook %s failed: %s", webhook_id, e)
        else:
            logger.exception("Replay of webhook %s raised", webhook_id)
        db.refresh(event)
        return WebhookRetryResponse(
            success=False,
            webhook=WebhookEventResponse.model_validate(event),
            replayed=True,
            error=str(e) or e.__class__.__name__,
        )

    db.refresh(event)
    return WebhookRetryResponse(
        success=True,
        webhook=WebhookEventResponse.model_validate(event),
        replayed=True,
        result=result,
    )


@router.get("/webhooks/stats", response_model=WebhookStatsResponse)
def webhook_stats(
    source: Optional[str] = None,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    return webhooks.webhook_stats(db, source=source)
