from pydantic import BaseModel, EmailStr, Field
from typing import Optional


class MigrationRequest(BaseModel):
    email: EmailStr
    user_id: str = Field(..., min_length=1, max_length=255)


class MigrationResponse(BaseModel):
    success: bool
    already_migrated: bool
    subscription_type: Optional[str] = None
    license_key: str
    email: str
    user_id: str
    expires_at: Optional[str] = None
    email_sent: bool
