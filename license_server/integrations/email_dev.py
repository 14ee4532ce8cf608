"""
File-based email sink for dev/test.

Drop-in replacement for MailgunTransport: same send() signature, writes one
.txt file per email (plus an .html sibling when there is an HTML body).
"""
import logging
import re
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from license_server.integrations.mailgun import SendResult

logger = logging.getLogger(__name__)


def _safe_name(address: str) -> str:
    return re.sub(r"[^A-Za-z0-9@._-]", "_", address)


class FileEmailTransport:
    def __init__(self, output_dir: str):
        self.output_dir = Path(output_dir)

    def send(self, to: str, subject: str, text: str, html: Optional[str] = None) -> SendResult:
        """
        Layout:
            {output_dir}/{to}/{timestamp}_{id}.txt
            {output_dir}/{to}/{timestamp}_{id}.html   when html given
        """
        if not to:
            logger.warning("dev send called with empty recipient. Skipping.")
            return SendResult(success=False, error="Missing recipient")

        now = datetime.now(timezone.utc)
        message_id = f"dev-{uuid.uuid4().hex[:12]}"
        stem = f"{now.strftime('%Y-%m-%dT%H-%M-%S')}_{message_id}"

        folder = self.output_dir / _safe_name(to)
        folder.mkdir(parents=True, exist_ok=True)

        envelope = f"TO: {to}\nSUBJECT: {subject}\nAT: {now.isoformat()}\n---\n{text}\n"
        (folder / f"{stem}.txt").write_text(envelope, encoding="utf-8")
        if html:
            (folder / f"{stem}.html").write_text(html, encoding="utf-8")

        logger.info("dev email → %s", folder / f"{stem}.txt")
        return SendResult(success=True, message_id=message_id)
