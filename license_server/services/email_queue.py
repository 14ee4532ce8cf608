"""
Durable email outbox.

Emails are written to email_queue first and sent later by a periodic sweep, so a
Mailgun outage never fails a purchase. Item lifecycle:

    PENDING -> SENDING -> SENT
                      +-> RETRYING (next_retry_at = now + backoff) -> SENDING ...
                      +-> FAILED once attempts reach max_attempts

FAILED items only move again through retry_failed_email (admin action).
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from license_server.models.base import utcnow
from license_server.models.email_queue import EmailQueueItem, EmailStatus
from license_server.models.paddle_purchase import PaddlePurchase
from license_server.models.revenuecat_migration import RevenueCatMigration

logger = logging.getLogger(__name__)

# Wait after the 1st, 2nd, ... failed attempt; the last value repeats
BACKOFF_MINUTES = [1, 5, 15, 60, 240]

MAX_ERROR_LENGTH = 2000


def backoff_delay(attempts: int) -> timedelta:
    index = min(max(attempts, 1) - 1, len(BACKOFF_MINUTES) - 1)
    return timedelta(minutes=BACKOFF_MINUTES[index])


def enqueue_email(
    db: Session,
    to: str,
    subject: str,
    text: str,
    html: str,
    metadata: Optional[Dict[str, Any]] = None,
    max_attempts: int = 5,
) -> EmailQueueItem:
    """Persist a PENDING email that is due immediately."""
    item = EmailQueueItem(
        to_address=to,
        subject=subject,
        text_content=text,
        html_content=html,
        status=EmailStatus.PENDING,
        attempts=0,
        max_attempts=max_attempts,
        next_retry_at=utcnow(),
        email_metadata=metadata or {},
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    logger.info("Queued email %s to %s (%s)", item.id, to, (metadata or {}).get("type"))
    return item


def _mark_source_sent(db: Session, item: EmailQueueItem) -> None:
    """Flip email_sent on the purchase or migration this email delivers."""
    metadata = item.email_metadata or {}
    sent_at = item.sent_at

    purchase_id = metadata.get("purchase_id")
    if purchase_id is not None:
        purchase = db.query(PaddlePurchase).filter(PaddlePurchase.id == purchase_id).first()
        if purchase is not None:
            purchase.email_sent = True
            purchase.email_sent_at = sent_at

    migration_id = metadata.get("migration_id")
    if migration_id is not None:
        migration = db.query(RevenueCatMigration).filter(RevenueCatMigration.id == migration_id).first()
        if migration is not None:
            migration.email_sent = True
            migration.email_sent_at = sent_at


def _handle_failure(db: Session, item: EmailQueueItem, error: str) -> None:
    if item.attempts < item.max_attempts:
        item.status = EmailStatus.RETRYING
        item.last_error = error[:MAX_ERROR_LENGTH]
        item.next_retry_at = utcnow() + backoff_delay(item.attempts)
        logger.warning(
            "Email %s to %s failed (attempt %d/%d), retry at %s: %s",
            item.id, item.to_address, item.attempts, item.max_attempts, item.next_retry_at, error,
        )
    else:
        item.status = EmailStatus.FAILED
        item.last_error = f"Max attempts ({item.max_attempts}) reached. Last error: {error}"[:MAX_ERROR_LENGTH]
        logger.error("Email %s to %s permanently failed: %s", item.id, item.to_address, error)
    db.commit()


def send_queued_email(db: Session, email_id: int, transport) -> bool:
    """
    Attempt one delivery of a queued email.

    Returns True when the item ends up SENT. Missing or already-SENT items are
    a no-op returning False. Transport failures (returned or raised) are
    recorded on the item, never raised.
    """
    item = db.query(EmailQueueItem).filter(EmailQueueItem.id == email_id).first()
    if item is None or item.status == EmailStatus.SENT:
        return False

    item.status = EmailStatus.SENDING
    item.attempts = (item.attempts or 0) + 1
    item.last_attempt_at = utcnow()
    db.commit()

    try:
        result = transport.send(item.to_address, item.subject, item.text_content, item.html_content)
    except Exception as e:
        logger.exception("Email transport raised for email %s", item.id)
        _handle_failure(db, item, str(e) or e.__class__.__name__)
        return False

    if not result.success:
        _handle_failure(db, item, result.error or "Unknown error")
        return False

    item.status = EmailStatus.SENT
    item.sent_at = utcnow()
    item.message_id = result.message_id
    item.last_error = None
    _mark_source_sent(db, item)
    db.commit()
    logger.info("Email %s sent to %s (message_id=%s)", item.id, item.to_address, result.message_id)
    return True


def due_email_ids(db: Session, limit: int = 10) -> List[int]:
    now = utcnow()
    rows = (
        db.query(EmailQueueItem.id)
        .filter(
            EmailQueueItem.status.in_([EmailStatus.PENDING, EmailStatus.RETRYING]),
            EmailQueueItem.attempts < EmailQueueItem.max_attempts,
            EmailQueueItem.next_retry_at <= now,
        )
        .order_by(EmailQueueItem.next_retry_at.asc(), EmailQueueItem.id.asc())
        .limit(limit)
        .all()
    )
    return [row[0] for row in rows]


def process_pending_emails(
    session_factory: Callable[[], Session],
    transport,
    limit: int = 10,
    max_workers: int = 4,
) -> Dict[str, int]:
    """
    Send up to `limit` due emails concurrently and wait for all of them.

    Each item runs in its own session on a worker thread; one item's failure
    never stops the others. Returns {processed, succeeded, failed} where
    succeeded counts items that reached SENT.
    """
    db = session_factory()
    try:
        email_ids = due_email_ids(db, limit)
    finally:
        db.close()

    if not email_ids:
        return {"processed": 0, "succeeded": 0, "failed": 0}

    def _send_one(email_id: int) -> bool:
        session = session_factory()
        try:
            return send_queued_email(session, email_id, transport)
        finally:
            session.close()

    succeeded = 0
    failed = 0
    with ThreadPoolExecutor(max_workers=max(1, min(max_workers, len(email_ids)))) as executor:
        futures = {executor.submit(_send_one, email_id): email_id for email_id in email_ids}
        for future, email_id in futures.items():
            try:
                if future.result():
                    succeeded += 1
                else:
                    failed += 1
            except Exception as e:
                logger.error("Sweep failed for email %s: %s", email_id, e)
                failed += 1

    logger.info(
        "Email queue sweep: processed=%d succeeded=%d failed=%d", len(email_ids), succeeded, failed
    )
    return {"processed": len(email_ids), "succeeded": succeeded, "failed": failed}


# ---------------------------------------------------------------------------
# Admin helpers
# ---------------------------------------------------------------------------


def retry_failed_email(db: Session, email_id: int, transport) -> EmailQueueItem:
    """
    Reset a FAILED email and try it once right away.

    Raises LookupError when missing and ValueError when the item is not FAILED.
    """
    item = db.query(EmailQueueItem).filter(EmailQueueItem.id == email_id).first()
    if item is None:
        raise LookupError("Email not found")
    if item.status != EmailStatus.FAILED:
        raise ValueError(f"Cannot retry email with status: {item.status.value}")

    item.status = EmailStatus.PENDING
    item.attempts = 0
    item.last_error = None
    item.next_retry_at = utcnow()
    db.commit()

    send_queued_email(db, email_id, transport)
    db.refresh(item)
    return item


def list_failed_emails(db: Session, limit: int = 50) -> List[EmailQueueItem]:
    return (
        db.query(EmailQueueItem)
        .filter(EmailQueueItem.status == EmailStatus.FAILED)
        .order_by(EmailQueueItem.created_at.desc(), EmailQueueItem.id.desc())
        .limit(limit)
        .all()
    )


def email_queue_stats(db: Session) -> Dict[str, int]:
    counts = dict(
        db.query(EmailQueueItem.status, func.count(EmailQueueItem.id))
        .group_by(EmailQueueItem.status)
        .all()
    )
    stats = {status.value.lower(): counts.get(status, 0) for status in EmailStatus}
    stats["total"] = sum(stats.values())
    return stats
