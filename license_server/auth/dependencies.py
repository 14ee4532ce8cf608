import logging
import secrets
from typing import Optional

from fastapi import Header, HTTPException, status

from license_server.config import settings

logger = logging.getLogger(__name__)


def require_admin_token(x_admin_token: Optional[str] = Header(None)) -> None:
    """
    Dependency guarding operator endpoints with the shared X-Admin-Token header.

    Without a configured ADMIN_API_TOKEN every admin call is refused.
    """
    if not settings.admin_api_token:
        logger.warning("Admin endpoint called but ADMIN_API_TOKEN is not configured")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin API not configured",
        )

    if not x_admin_token or not secrets.compare_digest(x_admin_token, settings.admin_api_token):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid admin token",
        )
