"""
Mailgun HTTP API client for transactional email.

Sends are synchronous httpx calls; the email queue owns retries, so a send
reports failure through SendResult instead of raising.
"""
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from license_server.config import settings

logger = logging.getLogger(__name__)


@dataclass
class SendResult:
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class MailgunTransport:
    def __init__(
        self,
        api_key: str,
        domain: str,
        api_base: str = "https://api.eu.mailgun.net",
        sender: str = "",
        timeout: float = 15.0,
    ):
        self.api_key = api_key
        self.domain = domain
        self.api_base = api_base.rstrip("/")
        self.sender = sender
        self.timeout = timeout

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> SendResult:
        if not self.api_key or not self.domain:
            return SendResult(success=False, error="Mailgun not configured")

        url = f"{self.api_base}/v3/{self.domain}/messages"
        data = {
            "from": self.sender,
            "to": to,
            "subject": subject,
            "text": text,
        }
        if html:
            data["html"] = html

        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(url, auth=("api", self.api_key), data=data)
        except httpx.HTTPError as e:
            logger.error("Mailgun send to %s failed: %s", to, e)
            return SendResult(success=False, error=str(e))

        if resp.status_code in (200, 201):
            try:
                message_id = resp.json().get("id")
            except ValueError:
                message_id = None
            logger.info("Mailgun accepted email to %s (id=%s)", to, message_id)
            return SendResult(success=True, message_id=message_id)

        logger.error("Mailgun send failed: %s %s", resp.status_code, resp.text)
        return SendResult(success=False, error=f"Mailgun API error {resp.status_code}: {resp.text[:500]}")


def get_email_transport():
    """
    Transport selected by configuration.

    Dev mode writes emails to disk; otherwise Mailgun (an unconfigured Mailgun
    transport fails every send, leaving items in the queue to retry).
    """
    if settings.email_dev_mode:
        from license_server.integrations.email_dev import FileEmailTransport
        return FileEmailTransport(settings.email_dev_output_dir)

    return MailgunTransport(
        api_key=settings.mailgun_api_key,
        domain=settings.mailgun_domain,
        api_base=settings.mailgun_api_base,
        sender=settings.email_from,
        timeout=settings.http_timeout_seconds,
    )
