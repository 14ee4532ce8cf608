"""
Paddle Billing webhook verification and REST API client.

Webhook auth: HMAC-SHA256 in the Paddle-Signature header, "ts=<unix>;h1=<hex>",
computed over "<ts>:<compact JSON body>" with the notification secret.
API auth: bearer API key. Sandbox keys contain "_sdbx_" and talk to the sandbox host.
"""
import hashlib
import hmac
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from license_server.config import settings
from license_server.exceptions import (
    ConfigurationError,
    PayloadError,
    SignatureError,
    UpstreamAPIError,
)

logger = logging.getLogger(__name__)

TRANSACTION_COMPLETED = "transaction.completed"
ADJUSTMENT_UPDATED = "adjustment.updated"

SUPPORTED_EVENTS = {TRANSACTION_COMPLETED, ADJUSTMENT_UPDATED}

PRODUCTION_API_BASE = "https://api.paddle.com"
SANDBOX_API_BASE = "https://sandbox-api.paddle.com"


@dataclass
class PaddleCustomer:
    email: str
    name: Optional[str]
    marketing_consent: bool


def canonical_body(payload: Dict[str, Any]) -> str:
    """Compact JSON as Paddle signs it: no whitespace, insertion order, unicode kept."""
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


def compute_signature(timestamp: str, payload: Dict[str, Any], secret: str) -> str:
    signed_payload = f"{timestamp}:{canonical_body(payload)}"
    return hmac.new(secret.encode("utf-8"), signed_payload.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(
    header_value: Optional[str],
    payload: Dict[str, Any],
    secret: str,
    tolerance_seconds: int = 300,
    now: Optional[float] = None,
) -> None:
    """
    Raise SignatureError unless the header carries a valid, fresh signature.

    Checks run in order: header present, header well-formed, HMAC match,
    timestamp within tolerance of now.
    """
    if not header_value:
        raise SignatureError("Missing signature")

    parts = {}
    for part in header_value.split(";"):
        key, sep, value = part.strip().partition("=")
        if sep:
            parts[key] = value

    timestamp = parts.get("ts")
    provided = parts.get("h1")
    if not timestamp or not provided:
        raise SignatureError("Invalid signature format")

    expected = compute_signature(timestamp, payload, secret)
    if not hmac.compare_digest(expected, provided):
        logger.warning("Invalid Paddle webhook signature")
        raise SignatureError("Invalid signature")

    try:
        ts = int(timestamp)
    except ValueError:
        raise SignatureError("Invalid timestamp")

    current = time.time() if now is None else now
    if abs(current - ts) > tolerance_seconds:
        logger.warning("Paddle webhook timestamp outside tolerance: %s", timestamp)
        raise SignatureError("Invalid timestamp")


def is_supported_event(event_type: str) -> bool:
    return event_type in SUPPORTED_EVENTS


def api_base(api_key: Optional[str] = None) -> str:
    """Configured base URL, else the sandbox or production host depending on the key."""
    if settings.paddle_api_base:
        return settings.paddle_api_base.rstrip("/")
    key = settings.paddle_api_key if api_key is None else api_key
    return SANDBOX_API_BASE if "_sdbx_" in key else PRODUCTION_API_BASE


def fetch_customer(customer_id: str) -> PaddleCustomer:
    """
    GET /customers/{id} once. No retries here; callers wrap this in the retry helper.

    Raises ConfigurationError without an API key, UpstreamAPIError for HTTP and
    transport failures (retryable for 5xx/429/network), PayloadError when the
    customer has no email.
    """
    if not settings.paddle_api_key:
        logger.error("PADDLE_API_KEY not configured")
        raise ConfigurationError("Paddle API not configured")

    url = f"{api_base()}/customers/{customer_id}"
    headers = {
        "Authorization": f"Bearer {settings.paddle_api_key}",
        "Content-Type": "application/json",
    }

    try:
        with httpx.Client(timeout=settings.http_timeout_seconds) as client:
            resp = client.get(url, headers=headers)
    except httpx.HTTPError as e:
        logger.error("Paddle customer fetch for %s failed: %s", customer_id, e)
        raise UpstreamAPIError(f"Failed to fetch customer details: {e}")

    if resp.status_code != 200:
        logger.error(
            "Paddle customer fetch for %s failed: %s %s", customer_id, resp.status_code, resp.text
        )
        raise UpstreamAPIError("Failed to fetch customer details", upstream_status=resp.status_code)

    data = resp.json().get("data") or {}
    email = data.get("email")
    if not email:
        logger.error("Paddle customer %s has no email", customer_id)
        raise PayloadError("Customer email not found")

    return PaddleCustomer(
        email=email,
        name=data.get("name") or None,
        marketing_consent=bool(data.get("marketing_consent", False)),
    )
