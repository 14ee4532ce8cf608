"""
Celery tasks for background delivery

Tasks:
- process_email_queue: sweep due emails out of the outbox (beat, every minute)
- send_operator_alert_email: deliver one operator alert
- health_check: smoke test for the worker

A sweep also runs once when a worker comes up, so emails queued while no
worker was running go out without waiting for the first beat tick.
"""
import logging
from typing import Any, Dict, Optional

from celery.signals import worker_ready

from license_server.celery_app import celery_app
from license_server.config import settings
from license_server.database import SessionLocal

logger = logging.getLogger(__name__)


@celery_app.task(name="license_server.tasks.health_check")
def health_check():
    """Simple health check task for testing Celery setup"""
    return {"status": "ok", "message": "Celery is working"}


@celery_app.task(name="license_server.tasks.process_email_queue", bind=True, max_retries=0)
def process_email_queue(self, limit: Optional[int] = None):
    """Send due queued emails; returns the sweep counters."""
    from license_server.integrations.mailgun import get_email_transport
    from license_server.services.email_queue import process_pending_emails

    try:
        return process_pending_emails(
            SessionLocal,
            get_email_transport(),
            limit=limit or settings.email_queue_batch_size,
            max_workers=settings.email_queue_workers,
        )
    except Exception as e:
        # The next beat tick retries; nothing is lost while rows stay in the queue
        logger.exception("Email queue sweep failed")
        return {"error": str(e)}


@celery_app.task(name="license_server.tasks.send_operator_alert_email", bind=True, max_retries=0)
def send_operator_alert_email(self, subject: str, message: str, context: Optional[Dict[str, Any]] = None):
    """
    Email an alert to the operator address.

    Sent directly, not through the queue. Failures are logged and reported in the
    task result only; nothing alerts about a failed alert.
    """
    from license_server.integrations.mailgun import get_email_transport
    from license_server.services.email_templates import render_alert_email

    if not settings.alert_email:
        logger.warning("ALERT (no ALERT_EMAIL configured): %s - %s %s", subject, message, context)
        return {"sent": False, "error": "alert_email not configured"}

    rendered = render_alert_email(subject, message, context)
    try:
        result = get_email_transport().send(settings.alert_email, rendered.subject, rendered.text, rendered.html)
    except Exception as e:
        logger.error("Failed to send alert email '%s': %s", subject, e)
        return {"sent": False, "error": str(e)}

    if not result.success:
        logger.error("Failed to send alert email '%s': %s", subject, result.error)
        return {"sent": False, "error": result.error}

    logger.info("Alert email sent: %s", subject)
    return {"sent": True, "message_id": result.message_id}


@worker_ready.connect
def sweep_on_worker_ready(sender=None, **kwargs):
    try:
        process_email_queue.delay()
    except Exception as e:
        logger.error("Could not schedule startup email sweep: %s", e)
