from pydantic import AliasChoices, BaseModel, Field
from datetime import datetime
from typing import Optional, List, Dict, Any
from license_server.models.license import LicenseStatus


class LicenseCreate(BaseModel):
    user_id: int
    expires_at: Optional[datetime] = None
    max_activations: int = Field(1, ge=1)
    metadata: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None


class LicenseUpdate(BaseModel):
    status: Optional[LicenseStatus] = None
    expires_at: Optional[datetime] = None
    max_activations: Optional[int] = Field(None, ge=1)
    notes: Optional[str] = None


class LicenseRevoke(BaseModel):
    reason: Optional[str] = Field(None, max_length=1000)


class LicenseValidateRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=64)
    device_fingerprint: Optional[str] = Field(None, min_length=1, max_length=255)
    device_name: Optional[str] = Field(None, max_length=255)


class LicenseCheckRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=64)
    device_fingerprint: Optional[str] = Field(None, min_length=1, max_length=255)


class LicenseDeactivateRequest(BaseModel):
    license_key: str = Field(..., min_length=1, max_length=64)
    device_fingerprint: str = Field(..., min_length=1, max_length=255)


class ActivationResponse(BaseModel):
    id: int
    device_fingerprint: str
    device_name: Optional[str] = None
    ip_address: Optional[str] = None
    activated_at: datetime
    last_validated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ValidationLogResponse(BaseModel):
    id: int
    is_valid: bool
    validation_message: Optional[str] = None
    ip_address: Optional[str] = None
    device_fingerprint: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class LicenseResponse(BaseModel):
    id: int
    user_id: int
    license_key: str
    status: LicenseStatus
    issued_at: datetime
    expires_at: Optional[datetime] = None
    activated_at: Optional[datetime] = None
    revoked_at: Optional[datetime] = None
    max_activations: int
    current_activations: int
    metadata: Optional[Dict[str, Any]] = Field(
        None, validation_alias=AliasChoices("license_metadata", "metadata")
    )
    notes: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class LicenseDetailResponse(LicenseResponse):
    activations: List[ActivationResponse] = []
    recent_validations: List[ValidationLogResponse] = []


class LicenseListResponse(BaseModel):
    items: List[LicenseResponse]
    total: int
    limit: int
    offset: int


class ValidationResponse(BaseModel):
    valid: bool
    message: str
    license: Optional[LicenseResponse] = None


class DeactivationResponse(BaseModel):
    success: bool
    message: str
    current_activations: Optional[int] = None
