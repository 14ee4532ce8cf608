"""
Error taxonomy for the webhook and licensing pipeline.

Every WebhookError carries the HTTP status the caller should answer with and
whether the billing provider is expected to resend. Anything that is not a
WebhookError is treated as retryable.
"""
from typing import Optional


class WebhookError(Exception):
    """Base error for webhook processing, classified by retryability and HTTP status"""

    def __init__(self, message: str, retryable: bool = True, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.retryable = retryable
        self.status_code = status_code


class SignatureError(WebhookError):
    """Missing, malformed, mismatched or stale webhook signature"""

    def __init__(self, message: str):
        super().__init__(message, retryable=False, status_code=401)


class PayloadError(WebhookError):
    """Body is not the shape the handler needs"""

    def __init__(self, message: str):
        super().__init__(message, retryable=False, status_code=400)


class BusinessRuleError(WebhookError):
    """
    The event is well-formed but must not produce a license.

    status_code 200 acknowledges the event so the provider stops resending it.
    """

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message, retryable=False, status_code=status_code)


class UpstreamAPIError(WebhookError):
    """A billing-provider API call failed. 5xx, 429 and transport failures are retryable."""

    def __init__(self, message: str, upstream_status: Optional[int] = None):
        retryable = upstream_status is None or upstream_status >= 500 or upstream_status == 429
        super().__init__(message, retryable=retryable, status_code=500)
        self.upstream_status = upstream_status


class ConcurrentProcessingError(WebhookError):
    def __init__(self, message: str = "Webhook is already being processed"):
        super().__init__(message, retryable=False, status_code=409)


class ConfigurationError(WebhookError):
    def __init__(self, message: str):
        super().__init__(message, retryable=False, status_code=500)


class NoEligiblePurchaseError(WebhookError):
    def __init__(
        self,
        message: str = "No eligible purchase found. Only lifetime and annual subscriptions can be migrated.",
    ):
        super().__init__(message, retryable=False, status_code=400)


class LicenseStateError(ValueError):
    """Requested license change violates the status machine or activation bounds"""


def is_retryable(error: BaseException) -> bool:
    if isinstance(error, WebhookError):
        return error.retryable
    return True
