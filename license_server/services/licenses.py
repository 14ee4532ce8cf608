"""
License issuance, validation and device activation.

Activation is tracked per device: each fingerprint that validates a license gets
a LicenseActivation row and holds one slot until it is deactivated. Re-validating
from an already activated device never consumes a second slot, and deactivation
frees the slot of the device that asked.

Callers that validate without a fingerprint fall back to the bare counter: the
first successful validation takes one anonymous slot. Those slots carry no device
row, so current_activations = device rows + anonymous slots. The counter-only
model is kept for old clients; it cannot tell which device released a slot.

Validation precedence (first match wins):
    not found -> revoked -> suspended -> expired -> device already active
    -> activation ceiling -> valid
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from license_server.models.base import utcnow
from license_server.models.license import (
    License,
    LicenseStatus,
    LicenseActivation,
    LicenseValidation,
)
from license_server.exceptions import LicenseStateError
from license_server.services.license_keys import generate_license_key

logger = logging.getLogger(__name__)

MSG_NOT_FOUND = "License key not found"
MSG_REVOKED = "License has been revoked"
MSG_SUSPENDED = "License is suspended"
MSG_EXPIRED = "License has expired"
MSG_MAX_ACTIVATIONS = "Maximum activations reached"
MSG_VALID = "License is valid"

MSG_DEACTIVATED = "License deactivated successfully"
MSG_NO_ACTIVATIONS = "No active activations to deactivate"
MSG_DEVICE_NOT_ACTIVATED = "Device is not activated for this license"

KEY_GENERATION_ATTEMPTS = 3

# ACTIVE <-> EXPIRED is the only reversible pair; REVOKED is terminal
ALLOWED_TRANSITIONS: Dict[LicenseStatus, set] = {
    LicenseStatus.ACTIVE: {LicenseStatus.EXPIRED, LicenseStatus.REVOKED, LicenseStatus.SUSPENDED},
    LicenseStatus.EXPIRED: {LicenseStatus.ACTIVE, LicenseStatus.REVOKED},
    LicenseStatus.SUSPENDED: {LicenseStatus.REVOKED},
    LicenseStatus.REVOKED: set(),
}


@dataclass
class ValidationResult:
    valid: bool
    message: str
    license: Optional[License] = None


@dataclass
class DeactivationResult:
    success: bool
    message: str
    current_activations: Optional[int] = None


# ---------------------------------------------------------------------------
# Lookup / CRUD
# ---------------------------------------------------------------------------


def get_license_by_key(db: Session, license_key: str) -> Optional[License]:
    return db.query(License).filter(License.license_key == license_key).first()


def get_license_by_id(db: Session, license_id: int) -> Optional[License]:
    return db.query(License).filter(License.id == license_id).first()


def recent_validations(db: Session, license_id: int, limit: int = 10) -> List[LicenseValidation]:
    return (
        db.query(LicenseValidation)
        .filter(LicenseValidation.license_id == license_id)
        .order_by(LicenseValidation.created_at.desc(), LicenseValidation.id.desc())
        .limit(limit)
        .all()
    )


def list_licenses(
    db: Session,
    user_id: Optional[int] = None,
    status: Optional[LicenseStatus] = None,
    limit: int = 50,
    offset: int = 0,
) -> Tuple[List[License], int]:
    query = db.query(License)
    if user_id is not None:
        query = query.filter(License.user_id == user_id)
    if status is not None:
        query = query.filter(License.status == status)

    total = query.count()
    items = query.order_by(License.created_at.desc(), License.id.desc()).offset(offset).limit(limit).all()
    return items, total


def create_license(
    db: Session,
    user_id: int,
    expires_at: Optional[datetime] = None,
    max_activations: int = 1,
    metadata: Optional[Dict[str, Any]] = None,
    notes: Optional[str] = None,
) -> License:
    """
    Add a new ACTIVE license to the session and flush it.

    Does not commit: purchase processing creates the license inside a larger
    transaction. Key collisions are checked up front and regenerated.
    """
    if max_activations < 1:
        raise LicenseStateError("max_activations must be at least 1")

    license_key = None
    for _ in range(KEY_GENERATION_ATTEMPTS):
        candidate = generate_license_key()
        if get_license_by_key(db, candidate) is None:
            license_key = candidate
            break
        logger.warning("License key collision on %s; regenerating", candidate)
    if license_key is None:
        raise RuntimeError("Could not generate a unique license key")

    license = License(
        user_id=user_id,
        license_key=license_key,
        status=LicenseStatus.ACTIVE,
        issued_at=utcnow(),
        expires_at=expires_at,
        max_activations=max_activations,
        current_activations=0,
        license_metadata=metadata,
        notes=notes,
    )
    db.add(license)
    db.flush()
    return license


def _append_note(license: License, note: str) -> None:
    license.notes = f"{license.notes}\n{note}" if license.notes else note


def _check_transition(current: LicenseStatus, target: LicenseStatus) -> None:
    if current == target:
        return
    if target not in ALLOWED_TRANSITIONS[current]:
        raise LicenseStateError(f"Cannot change license status from {current.value} to {target.value}")


def update_license(
    db: Session,
    license_id: int,
    status: Optional[LicenseStatus] = None,
    expires_at: Optional[datetime] = None,
    max_activations: Optional[int] = None,
    notes: Optional[str] = None,
) -> Optional[License]:
    """Apply an administrative update. Returns None when the license does not exist."""
    license = get_license_by_id(db, license_id)
    if license is None:
        return None

    if status is not None:
        _check_transition(license.status, status)
        if status == LicenseStatus.REVOKED and license.status != LicenseStatus.REVOKED:
            license.revoked_at = utcnow()
        license.status = status

    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        license.expires_at = expires_at
        # Extending an expired license reactivates it
        if status is None and license.status == LicenseStatus.EXPIRED and expires_at > utcnow():
            license.status = LicenseStatus.ACTIVE

    if max_activations is not None:
        if max_activations < 1:
            raise LicenseStateError("max_activations must be at least 1")
        if max_activations < license.current_activations:
            raise LicenseStateError(
                f"max_activations ({max_activations}) is below current activations "
                f"({license.current_activations})"
            )
        license.max_activations = max_activations

    if notes is not None:
        license.notes = notes

    db.commit()
    db.refresh(license)
    return license


def revoke_license(db: Session, license_id: int, reason: Optional[str] = None) -> Optional[License]:
    license = get_license_by_id(db, license_id)
    if license is None:
        return None
    if license.status == LicenseStatus.REVOKED:
        return license

    license.status = LicenseStatus.REVOKED
    license.revoked_at = utcnow()
    _append_note(license, reason or "License revoked")
    db.commit()
    db.refresh(license)
    logger.info("License %s revoked", license.id)
    return license


def delete_license(db: Session, license_id: int) -> bool:
    license = get_license_by_id(db, license_id)
    if license is None:
        return False
    db.delete(license)
    db.commit()
    logger.info("License %s deleted", license_id)
    return True


# ---------------------------------------------------------------------------
# Validation state machine
# ---------------------------------------------------------------------------


def _is_expired(license: License, now: datetime) -> bool:
    if license.status == LicenseStatus.EXPIRED:
        return True
    return license.expires_at is not None and license.expires_at < now


def _find_activation(db: Session, license: License, device_fingerprint: str) -> Optional[LicenseActivation]:
    return (
        db.query(LicenseActivation)
        .filter(
            LicenseActivation.license_id == license.id,
            LicenseActivation.device_fingerprint == device_fingerprint,
        )
        .first()
    )


def _count_device_activations(db: Session, license: License) -> int:
    return db.query(LicenseActivation).filter(LicenseActivation.license_id == license.id).count()


def _record_validation(
    db: Session,
    license: Optional[License],
    license_key: str,
    is_valid: bool,
    message: str,
    ip_address: Optional[str],
    user_agent: Optional[str],
    device_fingerprint: Optional[str],
) -> None:
    """Append an audit row. Never fails the caller."""
    try:
        db.add(
            LicenseValidation(
                license_id=license.id if license is not None else None,
                license_key=license_key,
                is_valid=is_valid,
                validation_message=message,
                ip_address=ip_address,
                user_agent=user_agent,
                device_fingerprint=device_fingerprint,
            )
        )
        db.commit()
    except Exception as e:
        db.rollback()
        logger.warning("Failed to record license validation for %s: %s", license_key, e)


def _precheck(license: Optional[License], now: datetime) -> Optional[str]:
    """Status checks shared by validate and check. Returns a failure message or None."""
    if license is None:
        return MSG_NOT_FOUND
    if license.status == LicenseStatus.REVOKED:
        return MSG_REVOKED
    if license.status == LicenseStatus.SUSPENDED:
        return MSG_SUSPENDED
    if _is_expired(license, now):
        return MSG_EXPIRED
    return None


def _activate(
    db: Session,
    license: License,
    now: datetime,
    device_fingerprint: Optional[str],
    device_name: Optional[str],
    ip_address: Optional[str],
    user_agent: Optional[str],
) -> None:
    if device_fingerprint:
        db.add(
            LicenseActivation(
                license_id=license.id,
                device_fingerprint=device_fingerprint,
                device_name=device_name,
                ip_address=ip_address,
                user_agent=user_agent,
                activated_at=now,
                last_validated_at=now,
            )
        )
    elif license.current_activations != 0:
        # Anonymous callers only take a slot on first use
        return

    # SQL-side increment so concurrent validations cannot both read the same count
    license.current_activations = License.current_activations + 1
    if license.activated_at is None:
        license.activated_at = now


def validate_license(
    db: Session,
    license_key: str,
    device_fingerprint: Optional[str] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
    device_name: Optional[str] = None,
) -> ValidationResult:
    """
    Decide whether a key is usable and activate the calling device when it is.

    Side effects: a past expiry persists status EXPIRED; a successful first
    validation from a device takes an activation slot. Every call appends an
    audit row.
    """
    now = utcnow()
    license = get_license_by_key(db, license_key)
    valid = False

    message = _precheck(license, now)
    if message == MSG_EXPIRED and license.status != LicenseStatus.EXPIRED:
        license.status = LicenseStatus.EXPIRED
        db.commit()
        logger.info("License %s marked expired during validation", license.id)

    if message is None:
        activation = _find_activation(db, license, device_fingerprint) if device_fingerprint else None
        if activation is not None:
            activation.last_validated_at = now
            if ip_address:
                activation.ip_address = ip_address
            if user_agent:
                activation.user_agent = user_agent
            db.commit()
            valid, message = True, MSG_VALID
        elif license.current_activations >= license.max_activations:
            message = MSG_MAX_ACTIVATIONS
        else:
            try:
                _activate(db, license, now, device_fingerprint, device_name, ip_address, user_agent)
                db.commit()
                valid, message = True, MSG_VALID
            except IntegrityError:
                # Lost a race: either the same device activated concurrently or the
                # activation ceiling was reached by another device
                db.rollback()
                db.refresh(license)
                if device_fingerprint and _find_activation(db, license, device_fingerprint) is not None:
                    valid, message = True, MSG_VALID
                else:
                    message = MSG_MAX_ACTIVATIONS
            db.refresh(license)

    _record_validation(db, license, license_key, valid, message, ip_address, user_agent, device_fingerprint)

    return ValidationResult(valid=valid, message=message, license=license if valid else None)


def check_license(
    db: Session,
    license_key: str,
    device_fingerprint: Optional[str] = None,
) -> ValidationResult:
    """Same verdict as validate_license, with no writes and no audit row."""
    now = utcnow()
    license = get_license_by_key(db, license_key)

    message = _precheck(license, now)
    if message is not None:
        return ValidationResult(valid=False, message=message)

    if device_fingerprint and _find_activation(db, license, device_fingerprint) is not None:
        return ValidationResult(valid=True, message=MSG_VALID, license=license)
    if license.current_activations >= license.max_activations:
        return ValidationResult(valid=False, message=MSG_MAX_ACTIVATIONS)
    return ValidationResult(valid=True, message=MSG_VALID, license=license)


def deactivate_license(
    db: Session,
    license_key: str,
    device_fingerprint: str,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> DeactivationResult:
    """
    Release the activation slot held by a device.

    When the device has no activation row but anonymous slots exist, one of
    those is released instead.
    """
    license = get_license_by_key(db, license_key)
    success = False
    current = None

    if license is None:
        message = MSG_NOT_FOUND
    elif license.current_activations <= 0:
        message = MSG_NO_ACTIVATIONS
        current = license.current_activations
    else:
        activation = _find_activation(db, license, device_fingerprint)
        anonymous_slots = license.current_activations - _count_device_activations(db, license)

        if activation is not None:
            db.delete(activation)
            success = True
        elif anonymous_slots > 0:
            success = True

        if success:
            license.current_activations = License.current_activations - 1
            db.commit()
            db.refresh(license)
            message = MSG_DEACTIVATED
        else:
            message = MSG_DEVICE_NOT_ACTIVATED
        current = license.current_activations

    _record_validation(
        db, license, license_key, success, f"Deactivation: {message}", ip_address, user_agent, device_fingerprint
    )

    return DeactivationResult(success=success, message=message, current_activations=current)
