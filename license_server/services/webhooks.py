"""
Idempotent webhook processing keyed by (source, event_id).

    absent / PENDING / FAILED / RETRYING --upsert--> PROCESSING --work ok--> COMPLETED
                                                       |
                                                       +--work raises--> FAILED (non-retryable)
                                                                         RETRYING (retryable)

A COMPLETED event replays its stored result without running the work again.
A PROCESSING event means another delivery is in flight; the call fails fast
with a 409 instead of waiting, and the provider's own resend picks it up later.

The PROCESSING row is committed before the work starts. This narrows the race
between two simultaneous first deliveries but does not close it: the unique
constraints the work itself relies on (e.g. paddle_purchases.paddle_transaction_id)
are what guarantee a single effect.
"""
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from license_server.models.base import utcnow
from license_server.models.webhook_event import WebhookEvent, WebhookStatus
from license_server.exceptions import ConcurrentProcessingError, is_retryable

logger = logging.getLogger(__name__)

MAX_ERROR_LENGTH = 2000


@dataclass
class WebhookOutcome:
    result: Any
    webhook_event: WebhookEvent
    is_new_event: bool


def _get_event(db: Session, source: str, event_id: str) -> Optional[WebhookEvent]:
    return (
        db.query(WebhookEvent)
        .filter(WebhookEvent.source == source, WebhookEvent.event_id == event_id)
        .first()
    )


def _claim(
    db: Session,
    source: str,
    event_type: str,
    event_id: Optional[str],
    payload: Dict[str, Any],
) -> WebhookEvent:
    """Move the event to PROCESSING (creating it if needed) and commit."""
    now = utcnow()
    event = _get_event(db, source, event_id) if event_id else None

    if event is None:
        event = WebhookEvent(
            source=source,
            event_type=event_type,
            event_id=event_id,
            payload=payload,
            status=WebhookStatus.PROCESSING,
            attempts=1,
            last_attempt_at=now,
        )
        db.add(event)
    else:
        event.status = WebhookStatus.PROCESSING
        event.attempts = (event.attempts or 0) + 1
        event.last_attempt_at = now

    try:
        db.commit()
    except IntegrityError:
        # Another delivery inserted the same (source, event_id) first
        db.rollback()
        logger.info("Concurrent first delivery of %s event %s", source, event_id)
        raise ConcurrentProcessingError()

    db.refresh(event)
    return event


def process_webhook(
    db: Session,
    source: str,
    event_type: str,
    event_id: Optional[str],
    payload: Dict[str, Any],
    work: Callable[[Dict[str, Any]], Any],
) -> WebhookOutcome:
    """
    Run work(payload) at most once to completion for (source, event_id).

    Without an event_id the work always runs and the row is audit-only.
    The work's return value must be JSON-serializable; it is stored and
    returned verbatim for later duplicate deliveries.
    """
    if event_id:
        existing = _get_event(db, source, event_id)
        if existing is not None:
            if existing.status == WebhookStatus.COMPLETED:
                logger.info("Duplicate %s event %s; returning stored result", source, event_id)
                return WebhookOutcome(result=existing.result, webhook_event=existing, is_new_event=False)
            if existing.status == WebhookStatus.PROCESSING:
                logger.warning("%s event %s is already being processed", source, event_id)
                raise ConcurrentProcessingError()

    event = _claim(db, source, event_type, event_id, payload)
    webhook_id = event.id

    try:
        result = work(payload)
    except Exception as e:
        db.rollback()
        status = WebhookStatus.RETRYING if is_retryable(e) else WebhookStatus.FAILED
        event = db.query(WebhookEvent).filter(WebhookEvent.id == webhook_id).first()
        if event is not None:
            event.status = status
            event.last_error = (str(e) or e.__class__.__name__)[:MAX_ERROR_LENGTH]
            db.commit()
        logger.warning(
            "%s event %s (%s) failed, marked %s: %s",
            source, event_id, event_type, status.value, e,
        )
        raise

    event = db.query(WebhookEvent).filter(WebhookEvent.id == webhook_id).first()
    event.status = WebhookStatus.COMPLETED
    event.completed_at = utcnow()
    event.last_error = None
    event.result = result
    db.commit()
    db.refresh(event)

    return WebhookOutcome(result=result, webhook_event=event, is_new_event=True)


# ---------------------------------------------------------------------------
# Admin helpers
# ---------------------------------------------------------------------------


def list_failed_webhooks(db: Session, source: Optional[str] = None, limit: int = 50) -> List[WebhookEvent]:
    query = db.query(WebhookEvent).filter(WebhookEvent.status == WebhookStatus.FAILED)
    if source:
        query = query.filter(WebhookEvent.source == source)
    return query.order_by(WebhookEvent.created_at.desc(), WebhookEvent.id.desc()).limit(limit).all()


def webhook_stats(db: Session, source: Optional[str] = None) -> Dict[str, int]:
    query = db.query(WebhookEvent.status, func.count(WebhookEvent.id))
    if source:
        query = query.filter(WebhookEvent.source == source)
    counts = dict(query.group_by(WebhookEvent.status).all())

    stats = {status.value.lower(): counts.get(status, 0) for status in WebhookStatus}
    stats["total"] = sum(stats.values())
    return stats


def reset_webhook_for_retry(db: Session, webhook_id: int) -> WebhookEvent:
    """
    Put a FAILED event back to PENDING so it can be processed again.

    Raises LookupError when missing and ValueError when not FAILED.
    """
    event = db.query(WebhookEvent).filter(WebhookEvent.id == webhook_id).first()
    if event is None:
        raise LookupError("Webhook not found")
    if event.status != WebhookStatus.FAILED:
        raise ValueError(f"Cannot retry webhook with status: {event.status.value}")

    event.status = WebhookStatus.PENDING
    event.last_error = None
    db.commit()
    db.refresh(event)
    logger.info("Webhook %s (%s %s) reset for retry", event.id, event.source, event.event_id)
    return event
