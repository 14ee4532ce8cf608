"""
Paddle purchase processing: transaction.completed issues a license, an approved
refund adjustment revokes it.

Each handler runs as the work of the webhook idempotency coordinator, keyed by
the Paddle entity id (transaction id / adjustment id). Handler results are
stored on the webhook event and replayed verbatim for duplicate deliveries, so
they must stay JSON-serializable.

Purchase flow:
    status check -> customer fetch (retried) -> one DB transaction
    (user + license + purchase) -> email enqueued outside the transaction
"""
import calendar
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from license_server.config import settings
from license_server.database import transaction
from license_server.exceptions import (
    BusinessRuleError,
    PayloadError,
    WebhookError,
    is_retryable,
)
from license_server.integrations import paddle
from license_server.models.base import utcnow
from license_server.models.license import License, LicenseStatus
from license_server.models.paddle_purchase import PaddlePurchase
from license_server.models.webhook_event import WebhookEvent, WebhookStatus
from license_server.services import email_queue, licenses
from license_server.services.email_templates import render_license_email
from license_server.services.notifications import send_operator_alert
from license_server.services.retry import retry
from license_server.services.users import find_or_create_user
from license_server.services.webhooks import process_webhook

logger = logging.getLogger(__name__)

SOURCE = "paddle"

CUSTOMER_FETCH_ATTEMPTS = 3
CUSTOMER_FETCH_BASE_DELAY = 1.0


@dataclass
class LicenseConfig:
    is_lifetime: bool
    expires_at: Optional[datetime]
    max_activations: int


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic; the day is clamped to the target month's length."""
    month_index = dt.month - 1 + months
    year = dt.year + month_index // 12
    month = month_index % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def determine_license_config(data: Dict[str, Any], now: Optional[datetime] = None) -> LicenseConfig:
    """
    Lifetime when any item's product name contains "lifetime" or its price has an
    explicit null billing_cycle; a lifetime item wins over recurring ones.
    Otherwise the expiry comes from the last recurring item's billing cycle.
    """
    now = now or utcnow()
    is_lifetime = False
    expires_at = None

    for item in data.get("items") or []:
        price = item.get("price") or {}
        product_name = ((price.get("product") or {}).get("name") or "").lower()

        if "lifetime" in product_name or ("billing_cycle" in price and price["billing_cycle"] is None):
            is_lifetime = True
            continue

        billing_cycle = price.get("billing_cycle")
        if not billing_cycle:
            continue
        interval = billing_cycle.get("interval")
        frequency = billing_cycle.get("frequency") or 1
        if interval == "year":
            expires_at = add_months(now, 12 * frequency)
        elif interval == "month":
            expires_at = add_months(now, frequency)

    if is_lifetime:
        expires_at = None

    return LicenseConfig(
        is_lifetime=is_lifetime,
        expires_at=expires_at,
        max_activations=settings.default_max_activations,
    )


def fetch_customer_with_retry(customer_id: str, transaction_id: str) -> paddle.PaddleCustomer:
    """
    Fetch the Paddle customer, retrying transient failures with backoff.

    When every attempt fails an operator alert is fired (without waiting for it)
    and the last error is re-raised.
    """

    def _on_retry(attempt: int, error: Exception) -> None:
        logger.warning(
            "Retrying Paddle customer fetch for %s (transaction %s), attempt %d failed: %s",
            customer_id, transaction_id, attempt, error,
        )

    try:
        return retry(
            lambda: paddle.fetch_customer(customer_id),
            max_attempts=CUSTOMER_FETCH_ATTEMPTS,
            base_delay=CUSTOMER_FETCH_BASE_DELAY,
            should_retry=is_retryable,
            on_retry=_on_retry,
        )
    except Exception as e:
        status_code = getattr(e, "upstream_status", None) or "unknown"
        logger.error(
            "Failed to fetch Paddle customer %s for transaction %s: %s", customer_id, transaction_id, e
        )
        send_operator_alert(
            "Paddle Customer Fetch Failed",
            "Failed to fetch customer details from Paddle API after "
            f"{CUSTOMER_FETCH_ATTEMPTS} attempts.\n\n"
            f"Transaction ID: {transaction_id}\nCustomer ID: {customer_id}\nError: {e}",
            {
                "transaction_id": transaction_id,
                "customer_id": customer_id,
                "status_code": status_code,
                "error": str(e),
                "paddle_api_url": paddle.api_base(),
            },
        )
        if isinstance(e, WebhookError):
            raise
        raise WebhookError(f"Failed to fetch customer details: {e}", retryable=True, status_code=500)


def _existing_purchase_result(purchase: PaddlePurchase) -> Dict[str, Any]:
    return {
        "license_key": purchase.license.license_key,
        "email": purchase.email,
        "already_processed": True,
    }


def _queue_license_email(db: Session, purchase: PaddlePurchase, license: License, is_lifetime: bool) -> None:
    """Enqueue the license email; a failure here is logged and never fails the purchase."""
    try:
        rendered = render_license_email(
            license_key=license.license_key,
            is_lifetime=is_lifetime,
            expires_at=license.expires_at,
            max_activations=license.max_activations,
        )
        email_queue.enqueue_email(
            db,
            to=purchase.email,
            subject=rendered.subject,
            text=rendered.text,
            html=rendered.html,
            metadata={
                "type": "paddle-license",
                "transaction_id": purchase.paddle_transaction_id,
                "purchase_id": purchase.id,
                "license_id": license.id,
                "user_id": purchase.user_id,
            },
            max_attempts=settings.email_max_attempts,
        )
    except Exception as e:
        db.rollback()
        logger.error(
            "Failed to queue license email for transaction %s (%s), purchase succeeded: %s",
            purchase.paddle_transaction_id, purchase.email, e,
        )


def handle_transaction_completed(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    transaction_id = data.get("id")
    customer_id = data.get("customer_id")
    status = data.get("status")

    logger.info(
        "Processing transaction.completed %s (customer=%s, status=%s)", transaction_id, customer_id, status
    )

    if status != "completed":
        logger.info("Transaction %s not completed (%s), skipping", transaction_id, status)
        raise BusinessRuleError("Transaction not completed", status_code=200)

    if not customer_id:
        logger.error("No customer ID in transaction %s", transaction_id)
        raise BusinessRuleError("No customer ID found", status_code=400)

    customer = fetch_customer_with_retry(customer_id, transaction_id)
    config = determine_license_config(data)

    try:
        with transaction(db):
            existing = (
                db.query(PaddlePurchase)
                .filter(PaddlePurchase.paddle_transaction_id == transaction_id)
                .first()
            )
            if existing is not None:
                logger.info("Transaction %s already processed", transaction_id)
                return _existing_purchase_result(existing)

            user = find_or_create_user(
                db, customer.email, name=customer.name, marketing_consent=customer.marketing_consent
            )
            license = licenses.create_license(
                db,
                user_id=user.id,
                expires_at=config.expires_at,
                max_activations=config.max_activations,
                notes=f"Paddle purchase - Transaction: {transaction_id}",
                metadata={
                    "source": SOURCE,
                    "transaction_id": transaction_id,
                    "customer_id": customer_id,
                    "paddle_data": data,
                },
            )
            purchase = PaddlePurchase(
                paddle_transaction_id=transaction_id,
                paddle_customer_id=customer_id,
                email=user.email,
                license_id=license.id,
                user_id=user.id,
                email_sent=False,
                paddle_data=data,
            )
            db.add(purchase)
            db.flush()
    except IntegrityError:
        # Lost the race against a concurrent delivery of the same transaction
        existing = (
            db.query(PaddlePurchase)
            .filter(PaddlePurchase.paddle_transaction_id == transaction_id)
            .first()
        )
        if existing is None:
            raise
        logger.info("Transaction %s was processed concurrently", transaction_id)
        return _existing_purchase_result(existing)

    logger.info("Issued license %s to %s for transaction %s", license.license_key, user.email, transaction_id)

    _queue_license_email(db, purchase, license, config.is_lifetime)

    return {
        "license_key": license.license_key,
        "email": purchase.email,
        "already_processed": False,
    }


def handle_adjustment_updated(db: Session, data: Dict[str, Any]) -> Dict[str, Any]:
    adjustment_id = data.get("id")
    transaction_id = data.get("transaction_id")
    status = data.get("status")
    action = data.get("action")

    logger.info(
        "Received adjustment.updated %s (transaction=%s, status=%s, action=%s)",
        adjustment_id, transaction_id, status, action,
    )

    if status != "approved" or action != "refund":
        return {"message": "Adjustment acknowledged (not a refund)"}

    with transaction(db):
        purchase = (
            db.query(PaddlePurchase)
            .filter(PaddlePurchase.paddle_transaction_id == transaction_id)
            .first()
        )
        if purchase is None:
            logger.warning("Refund %s received but no purchase found for %s", adjustment_id, transaction_id)
            return {"message": "No purchase found for refund"}

        license = purchase.license
        if license.status == LicenseStatus.REVOKED:
            logger.info("License %s already revoked", license.id)
            return {"message": "License already revoked"}

        license.status = LicenseStatus.REVOKED
        license.revoked_at = utcnow()
        note = f"Revoked due to refund - Adjustment: {adjustment_id}, Transaction: {transaction_id}"
        license.notes = f"{license.notes}\n{note}" if license.notes else note
        license_id = license.id

    logger.info(
        "License %s revoked due to refund %s (transaction %s)", license_id, adjustment_id, transaction_id
    )
    return {"message": "License revoked", "license_id": license_id}


def dispatch_paddle_event(db: Session, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Route a verified Paddle notification and build the response body.

    Unknown event types are acknowledged without being recorded.
    """
    if not isinstance(payload, dict):
        raise PayloadError("Missing event_type or data in payload")
    event_type = payload.get("event_type")
    data = payload.get("data")
    if not event_type or not isinstance(data, dict) or not data:
        raise PayloadError("Missing event_type or data in payload")

    logger.info("Received Paddle webhook %s (%s)", event_type, data.get("id"))

    handlers = {
        paddle.TRANSACTION_COMPLETED: handle_transaction_completed,
        paddle.ADJUSTMENT_UPDATED: handle_adjustment_updated,
    }
    handler = handlers.get(event_type)
    if handler is None:
        return {"success": True, "message": "Event acknowledged"}

    # one adjustment gets several adjustment.updated notifications, so key on the
    # notification id; data.id only identifies the entity
    event_id = payload.get("event_id") or data.get("id")
    outcome = process_webhook(
        db, SOURCE, event_type, event_id, payload, lambda p: handler(db, p["data"])
    )
    return {"success": True, **(outcome.result or {}), "is_new_event": outcome.is_new_event}


def replay_webhook(db: Session, webhook_id: int) -> Dict[str, Any]:
    """
    Re-run a stored Paddle event from its saved payload.

    Meant for events an operator reset to PENDING; a COMPLETED event just
    replays its stored result.
    """
    event = db.query(WebhookEvent).filter(WebhookEvent.id == webhook_id).first()
    if event is None:
        raise LookupError("Webhook not found")
    if event.source != SOURCE:
        raise ValueError(f"Replay is not supported for source: {event.source}")
    if event.status == WebhookStatus.PROCESSING:
        raise ValueError("Webhook is already being processed")

    logger.info("Replaying %s webhook %s (%s)", event.source, event.id, event.event_id)
    return dispatch_paddle_event(db, event.payload)
