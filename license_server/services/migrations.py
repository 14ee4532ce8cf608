"""
One-shot migration of RevenueCat customers to license keys.

Only lifetime purchases and annual subscriptions qualify. A RevenueCat user is
migrated at most once: repeated calls return the first result without calling
RevenueCat again.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from license_server.config import settings
from license_server.database import transaction
from license_server.exceptions import ConfigurationError, NoEligiblePurchaseError, is_retryable
from license_server.integrations import revenuecat
from license_server.models.base import utcnow
from license_server.models.revenuecat_migration import RevenueCatMigration
from license_server.services import email_queue, licenses
from license_server.services.email_templates import render_license_email
from license_server.services.retry import retry
from license_server.services.users import find_or_create_user

logger = logging.getLogger(__name__)

SOURCE = "revenuecat_migration"

# "At least 11 months" left, counted in 30-day months
ANNUAL_MIN_REMAINING = timedelta(days=330)


@dataclass
class Eligibility:
    subscription_type: str  # lifetime | annual
    expires_at: Optional[datetime]


def parse_entitlement_expiry(value: Any) -> Optional[datetime]:
    """RevenueCat sends epoch milliseconds; ISO strings are accepted too."""
    if isinstance(value, bool):
        raise ValueError(f"Unsupported expires_at: {value!r}")
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, str):
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValueError(f"Unsupported expires_at: {value!r}")


def find_eligible_entitlement(
    entitlements: List[Dict[str, Any]], now: Optional[datetime] = None
) -> Optional[Eligibility]:
    """First entitlement that is lifetime (no expiry) or annual (330+ days left)."""
    now = now or utcnow()
    for entitlement in entitlements:
        raw = entitlement.get("expires_at")
        if raw is None:
            return Eligibility(subscription_type="lifetime", expires_at=None)

        try:
            expires_at = parse_entitlement_expiry(raw)
        except ValueError:
            logger.warning("Skipping entitlement with unreadable expires_at: %r", raw)
            continue

        if expires_at - now >= ANNUAL_MIN_REMAINING:
            return Eligibility(subscription_type="annual", expires_at=expires_at)

    return None


def _response(migration: RevenueCatMigration, already_migrated: bool) -> Dict[str, Any]:
    expires_at = migration.license.expires_at
    return {
        "success": True,
        "already_migrated": already_migrated,
        "subscription_type": migration.subscription_type,
        "license_key": migration.license.license_key,
        "email": migration.email,
        "user_id": migration.revenuecat_user_id,
        "expires_at": expires_at.isoformat() if expires_at else None,
        "email_sent": migration.email_sent,
    }


def _get_migration(db: Session, app_user_id: str) -> Optional[RevenueCatMigration]:
    return (
        db.query(RevenueCatMigration)
        .filter(RevenueCatMigration.revenuecat_user_id == app_user_id)
        .first()
    )


def _queue_migration_email(db: Session, migration: RevenueCatMigration) -> None:
    license = migration.license
    try:
        rendered = render_license_email(
            license_key=license.license_key,
            is_lifetime=migration.subscription_type == "lifetime",
            expires_at=license.expires_at,
            max_activations=license.max_activations,
            migration=True,
        )
        email_queue.enqueue_email(
            db,
            to=migration.email,
            subject=rendered.subject,
            text=rendered.text,
            html=rendered.html,
            metadata={
                "type": "migration-license",
                "revenuecat_user_id": migration.revenuecat_user_id,
                "migration_id": migration.id,
                "license_id": license.id,
                "user_id": migration.user_id,
            },
            max_attempts=settings.email_max_attempts,
        )
    except Exception as e:
        db.rollback()
        logger.error(
            "Failed to queue migration email for %s (%s), migration succeeded: %s",
            migration.revenuecat_user_id, migration.email, e,
        )


def migrate_revenuecat_user(db: Session, email: str, app_user_id: str) -> Dict[str, Any]:
    if not settings.revenuecat_configured:
        raise ConfigurationError("RevenueCat configuration missing")

    existing = _get_migration(db, app_user_id)
    if existing is not None:
        logger.info("RevenueCat user %s already migrated", app_user_id)
        return _response(existing, already_migrated=True)

    data = retry(
        lambda: revenuecat.fetch_customer(app_user_id),
        should_retry=is_retryable,
        on_retry=lambda attempt, e: logger.warning(
            "Retrying RevenueCat fetch for %s, attempt %d failed: %s", app_user_id, attempt, e
        ),
    )
    entitlements = (data.get("active_entitlements") or {}).get("items") or []

    eligibility = find_eligible_entitlement(entitlements)
    if eligibility is None:
        logger.info("No eligible purchase for RevenueCat user %s (%d entitlements)", app_user_id, len(entitlements))
        raise NoEligiblePurchaseError()

    logger.info(
        "Eligible %s entitlement for RevenueCat user %s (expires %s)",
        eligibility.subscription_type, app_user_id, eligibility.expires_at,
    )

    try:
        with transaction(db):
            user = find_or_create_user(db, email)
            license = licenses.create_license(
                db,
                user_id=user.id,
                expires_at=eligibility.expires_at,
                max_activations=settings.default_max_activations,
                notes=f"Migrated from RevenueCat user: {app_user_id} ({eligibility.subscription_type})",
                metadata={
                    "source": SOURCE,
                    "subscription_type": eligibility.subscription_type,
                    "revenuecat_user_id": app_user_id,
                    "revenuecat_data": data,
                },
            )
            migration = RevenueCatMigration(
                revenuecat_user_id=app_user_id,
                email=user.email,
                license_id=license.id,
                user_id=user.id,
                subscription_type=eligibility.subscription_type,
                email_sent=False,
                revenuecat_data=data,
            )
            db.add(migration)
            db.flush()
    except IntegrityError:
        existing = _get_migration(db, app_user_id)
        if existing is None:
            raise
        logger.info("RevenueCat user %s was migrated concurrently", app_user_id)
        return _response(existing, already_migrated=True)

    logger.info("Migrated RevenueCat user %s to license %s", app_user_id, license.license_key)

    _queue_migration_email(db, migration)
    db.refresh(migration)
    return _response(migration, already_migrated=False)
