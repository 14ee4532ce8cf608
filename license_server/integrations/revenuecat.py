"""
RevenueCat REST API v2 client, used only by the one-shot account migration.
"""
import logging
from typing import Any, Dict
from urllib.parse import quote

import httpx

from license_server.config import settings
from license_server.exceptions import ConfigurationError, UpstreamAPIError

logger = logging.getLogger(__name__)


def fetch_customer(app_user_id: str) -> Dict[str, Any]:
    """
    GET /projects/{project}/customers/{user} and return the decoded body.

    The body carries active_entitlements.items[], each with an expires_at that is
    null for lifetime purchases.
    """
    if not settings.revenuecat_configured:
        raise ConfigurationError("RevenueCat configuration missing")

    url = (
        f"{settings.revenuecat_api_base.rstrip('/')}/projects/"
        f"{quote(settings.revenuecat_project_id, safe='')}/customers/{quote(app_user_id, safe='')}"
    )
    headers = {
        "Authorization": f"Bearer {settings.revenuecat_api_key}",
        "Content-Type": "application/json",
    }

    try:
        with httpx.Client(timeout=settings.http_timeout_seconds) as client:
            resp = client.get(url, headers=headers)
    except httpx.HTTPError as e:
        logger.error("RevenueCat request for %s failed: %s", app_user_id, e)
        raise UpstreamAPIError(f"RevenueCat API error: {e}")

    if resp.status_code != 200:
        logger.error("RevenueCat API request failed: %s %s", resp.status_code, resp.text)
        raise UpstreamAPIError(
            f"RevenueCat API error: {resp.reason_phrase or resp.status_code}",
            upstream_status=resp.status_code,
        )

    return resp.json()
