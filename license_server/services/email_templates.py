"""
Email bodies for license delivery and operator alerts.

Plain str.format templates; every interpolated value is HTML-escaped in the
HTML variant.
"""
import html
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

PRODUCT_NAME = "AppGrid"

SUBJECT_PURCHASE = "Your {product_name} License Key"
SUBJECT_MIGRATION = "Your {product_name} License Key - Account Migration"

TEXT_INTRO_PURCHASE = "Thank you for purchasing {product_name}!"
TEXT_INTRO_MIGRATION = (
    "Thank you for being a {product_name} customer! We have moved to a new licensing "
    "system and your existing purchase has been carried over."
)

TEXT_BODY = (
    "{intro}\n\n"
    "Your license key:\n\n"
    "    {license_key}\n\n"
    "License type: {license_type}\n"
    "{expiry_line}"
    "You can activate this license on up to {max_activations} devices.\n\n"
    "To activate, open {product_name}, go to Settings > License and paste the key above.\n\n"
    "Keep this email for your records.\n"
)

HTML_BODY = (
    "<html><body style=\"font-family: sans-serif;\">"
    "<p>{intro}</p>"
    "<p>Your license key:</p>"
    "<p style=\"font-family: monospace; font-size: 20px; font-weight: bold;\">{license_key}</p>"
    "<p>License type: {license_type}</p>"
    "{expiry_line}"
    "<p>You can activate this license on up to {max_activations} devices.</p>"
    "<p>To activate, open {product_name}, go to Settings &gt; License and paste the key above.</p>"
    "<p>Keep this email for your records.</p>"
    "</body></html>"
)

ALERT_SUBJECT = "[{product_name} Alert] {subject}"
ALERT_BODY = "{message}\n\nContext:\n{context}\n\nTime: {timestamp}\n"


@dataclass
class RenderedEmail:
    subject: str
    text: str
    html: str


def format_expiration(expires_at: Optional[datetime]) -> Optional[str]:
    """'January 5, 2027' style date, or None for lifetime licenses."""
    if expires_at is None:
        return None
    return f"{expires_at.strftime('%B')} {expires_at.day}, {expires_at.year}"


def render_license_email(
    license_key: str,
    is_lifetime: bool,
    expires_at: Optional[datetime],
    max_activations: int,
    migration: bool = False,
) -> RenderedEmail:
    intro = TEXT_INTRO_MIGRATION if migration else TEXT_INTRO_PURCHASE
    intro = intro.format(product_name=PRODUCT_NAME)
    license_type = "Lifetime" if is_lifetime else "Subscription"
    expiration = None if is_lifetime else format_expiration(expires_at)

    text = TEXT_BODY.format(
        intro=intro,
        license_key=license_key,
        license_type=license_type,
        expiry_line=f"Valid until: {expiration}\n" if expiration else "",
        max_activations=max_activations,
        product_name=PRODUCT_NAME,
    )
    body = HTML_BODY.format(
        intro=html.escape(intro),
        license_key=html.escape(license_key),
        license_type=html.escape(license_type),
        expiry_line=f"<p>Valid until: {html.escape(expiration)}</p>" if expiration else "",
        max_activations=max_activations,
        product_name=html.escape(PRODUCT_NAME),
    )
    subject = (SUBJECT_MIGRATION if migration else SUBJECT_PURCHASE).format(product_name=PRODUCT_NAME)

    return RenderedEmail(subject=subject, text=text, html=body)


def render_alert_email(subject: str, message: str, context: Optional[Dict[str, Any]] = None) -> RenderedEmail:
    timestamp = datetime.now(timezone.utc).isoformat()
    context_text = json.dumps(context or {}, indent=2, default=str, ensure_ascii=False)

    text = ALERT_BODY.format(message=message, context=context_text, timestamp=timestamp)
    body = (
        "<html><body>"
        f"<h2>{html.escape(subject)}</h2>"
        f"<p style=\"white-space: pre-wrap;\">{html.escape(message)}</p>"
        f"<pre>{html.escape(context_text)}</pre>"
        f"<p>Time: {timestamp}</p>"
        "</body></html>"
    )
    return RenderedEmail(
        subject=ALERT_SUBJECT.format(product_name=PRODUCT_NAME, subject=subject),
        text=text,
        html=body,
    )
