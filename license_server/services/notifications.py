"""
Operator alerting.

This is intentionally thin: callers decide when something deserves an alert,
the Celery task decides how it is delivered.
"""
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def send_operator_alert(subject: str, message: str, context: Optional[Dict[str, Any]] = None) -> None:
    """
    Fire-and-forget alert to the operator.

    Never raises and never blocks on delivery: the email is sent by a Celery
    worker, and a failure to dispatch is only logged.
    """
    logger.error("OPERATOR ALERT: %s | %s | %s", subject, message, context)
    try:
        from license_server.tasks import send_operator_alert_email
        send_operator_alert_email.delay(subject, message, context or {})
    except Exception as e:
        logger.error("Failed to dispatch operator alert '%s': %s", subject, e)
