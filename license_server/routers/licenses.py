"""
License API.

validate / check / deactivate are called by the desktop client with just a
license key. Issuing and managing licenses is admin only.
"""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status
from sqlalchemy.orm import Session

from license_server.auth.dependencies import require_admin_token
from license_server.database import get_db
from license_server.exceptions import LicenseStateError
from license_server.models.license import License, LicenseStatus
from license_server.models.user import User
from license_server.schemas.licenses import (
    LicenseCreate,
    LicenseUpdate,
    LicenseRevoke,
    LicenseValidateRequest,
    LicenseCheckRequest,
    LicenseDeactivateRequest,
    LicenseResponse,
    LicenseDetailResponse,
    LicenseListResponse,
    ValidationResponse,
    DeactivationResponse,
    ValidationLogResponse,
)
from license_server.services import licenses as license_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/licenses", tags=["Licenses"])

admin_only = require_admin_token


def _client_info(request: Request):
    ip_address = request.client.host if request.client else None
    return ip_address, request.headers.get("user-agent")


def _detail(db: Session, license: License) -> LicenseDetailResponse:
    validations = license_service.recent_validations(db, license.id)
    return LicenseDetailResponse.model_validate(license).model_copy(
        update={"recent_validations": [ValidationLogResponse.model_validate(v) for v in validations]}
    )


@router.post("", response_model=LicenseResponse, status_code=status.HTTP_201_CREATED)
def create_license(
    data: LicenseCreate,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    user = db.query(User).filter(User.id == data.user_id).first()
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    try:
        license = license_service.create_license(
            db,
            user_id=user.id,
            expires_at=data.expires_at,
            max_activations=data.max_activations,
            metadata=data.metadata,
            notes=data.notes,
        )
        db.commit()
    except LicenseStateError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    db.refresh(license)
    logger.info("License %s issued to user %s", license.id, user.id)
    return license


@router.post("/validate", response_model=ValidationResponse)
def validate_license(
    data: LicenseValidateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    ip_address, user_agent = _client_info(request)
    result = license_service.validate_license(
        db,
        data.license_key,
        device_fingerprint=data.device_fingerprint,
        ip_address=ip_address,
        user_agent=user_agent,
        device_name=data.device_name,
    )
    return ValidationResponse(
        valid=result.valid,
        message=result.message,
        license=LicenseResponse.model_validate(result.license) if result.license else None,
    )


@router.post("/check", response_model=ValidationResponse)
def check_license(
    data: LicenseCheckRequest,
    db: Session = Depends(get_db),
):
    """Read-only verdict: never activates a device and is not logged."""
    result = license_service.check_license(db, data.license_key, device_fingerprint=data.device_fingerprint)
    return ValidationResponse(
        valid=result.valid,
        message=result.message,
        license=LicenseResponse.model_validate(result.license) if result.license else None,
    )


@router.post("/deactivate", response_model=DeactivationResponse)
def deactivate_license(
    data: LicenseDeactivateRequest,
    request: Request,
    db: Session = Depends(get_db),
):
    ip_address, user_agent = _client_info(request)
    result = license_service.deactivate_license(
        db,
        data.license_key,
        data.device_fingerprint,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    return DeactivationResponse(
        success=result.success,
        message=result.message,
        current_activations=result.current_activations,
    )


@router.get("/key/{license_key}", response_model=LicenseDetailResponse)
def get_license_by_key(
    license_key: str,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    license = license_service.get_license_by_key(db, license_key)
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    return _detail(db, license)


@router.get("/{license_id}", response_model=LicenseDetailResponse)
def get_license(
    license_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    license = license_service.get_license_by_id(db, license_id)
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    return _detail(db, license)


@router.get("", response_model=LicenseListResponse)
def list_licenses(
    user_id: Optional[int] = None,
    status_filter: Optional[LicenseStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=100),
    offset: int = Query(0, ge=0),
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    items, total = license_service.list_licenses(
        db, user_id=user_id, status=status_filter, limit=limit, offset=offset
    )
    return LicenseListResponse(
        items=[LicenseResponse.model_validate(item) for item in items],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.patch("/{license_id}", response_model=LicenseResponse)
def update_license(
    license_id: int,
    data: LicenseUpdate,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    try:
        license = license_service.update_license(
            db,
            license_id,
            status=data.status,
            expires_at=data.expires_at,
            max_activations=data.max_activations,
            notes=data.notes,
        )
    except LicenseStateError as e:
        db.rollback()
        raise HTTPException(status_code=400, detail=str(e))

    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    return license


@router.post("/{license_id}/revoke", response_model=LicenseResponse)
def revoke_license(
    license_id: int,
    data: Optional[LicenseRevoke] = None,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    license = license_service.revoke_license(db, license_id, reason=data.reason if data else None)
    if not license:
        raise HTTPException(status_code=404, detail="License not found")
    return license


@router.delete("/{license_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_license(
    license_id: int,
    db: Session = Depends(get_db),
    _: None = Depends(admin_only),
):
    if not license_service.delete_license(db, license_id):
        raise HTTPException(status_code=404, detail="License not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)
