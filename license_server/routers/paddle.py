"""
Paddle webhook receiver.

Verify-then-process pattern: check the HMAC signature and timestamp, then run
the handler synchronously under the idempotency coordinator. Paddle resends on
any non-2xx answer, so the status code tells it whether to retry.
"""
import json
import logging
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from license_server.config import settings
from license_server.database import get_db
from license_server.exceptions import ConfigurationError, PayloadError, WebhookError
from license_server.integrations import paddle
from license_server.schemas.webhooks import PaddleWebhookResponse
from license_server.services.purchases import dispatch_paddle_event

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/paddle", tags=["Paddle"])


@router.post("/webhook", response_model=PaddleWebhookResponse, response_model_exclude_none=True)
async def paddle_webhook(
    request: Request,
    db: Session = Depends(get_db),
):
    """
    Receive Paddle Billing notifications.

    WebhookErrors are rendered by the app-level handler with their own status
    and retryable flag; anything else becomes a retryable 500.
    """
    if not settings.paddle_webhook_secret:
        logger.error("PADDLE_WEBHOOK_SECRET not configured")
        raise ConfigurationError("Paddle webhook not configured")

    raw_body = await request.body()
    try:
        payload = json.loads(raw_body)
    except ValueError:
        raise PayloadError("Invalid JSON body")

    paddle.verify_signature(
        request.headers.get("Paddle-Signature"),
        payload,
        settings.paddle_webhook_secret,
        tolerance_seconds=settings.paddle_signature_tolerance_seconds,
    )

    try:
        return await run_in_threadpool(dispatch_paddle_event, db, payload)
    except WebhookError:
        raise
    except Exception as e:
        logger.exception("Paddle webhook processing failed")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e) or "Webhook processing failed",
                "retryable": True,
            },
        )
