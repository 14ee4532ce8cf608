import enum
from sqlalchemy import (
    Column,
    Integer,
    String,
    Text,
    Boolean,
    ForeignKey,
    Enum,
    UniqueConstraint,
    CheckConstraint,
)
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, JSONType, UTCDateTime


class LicenseStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    EXPIRED = "EXPIRED"
    REVOKED = "REVOKED"
    SUSPENDED = "SUSPENDED"


class License(Base):
    __tablename__ = "licenses"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    license_key = Column(String(19), unique=True, nullable=False, index=True)
    status = Column(Enum(LicenseStatus), nullable=False, default=LicenseStatus.ACTIVE, index=True)
    issued_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    expires_at = Column(UTCDateTime, nullable=True, index=True)
    activated_at = Column(UTCDateTime, nullable=True)
    revoked_at = Column(UTCDateTime, nullable=True)
    max_activations = Column(Integer, nullable=False, default=1)
    current_activations = Column(Integer, nullable=False, default=0)
    # "metadata" is reserved on declarative classes
    license_metadata = Column("metadata", JSONType, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    user = relationship("User", back_populates="licenses")
    activations = relationship(
        "LicenseActivation",
        back_populates="license",
        cascade="all, delete-orphan",
        order_by="LicenseActivation.activated_at",
    )
    validations = relationship("LicenseValidation", back_populates="license")

    __table_args__ = (
        CheckConstraint("max_activations >= 1", name="ck_licenses_max_activations_positive"),
        CheckConstraint(
            "current_activations >= 0 AND current_activations <= max_activations",
            name="ck_licenses_activation_bounds",
        ),
    )


class LicenseActivation(Base):
    """One device holding one activation slot of a license"""
    __tablename__ = "license_activations"

    id = Column(Integer, primary_key=True, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False, index=True)
    device_fingerprint = Column(String(255), nullable=False)
    device_name = Column(String(255), nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    activated_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    last_validated_at = Column(UTCDateTime, nullable=True)

    license = relationship("License", back_populates="activations")

    __table_args__ = (
        UniqueConstraint("license_id", "device_fingerprint", name="uq_license_activations_license_device"),
    )


class LicenseValidation(Base):
    """Append-only audit log of validate/deactivate attempts, including failed lookups"""
    __tablename__ = "license_validations"

    id = Column(Integer, primary_key=True, index=True)
    # NULL when the presented key did not resolve to a license
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="SET NULL"), nullable=True, index=True)
    license_key = Column(String(255), nullable=True)
    is_valid = Column(Boolean, nullable=False)
    validation_message = Column(Text, nullable=True)
    ip_address = Column(String(64), nullable=True)
    user_agent = Column(Text, nullable=True)
    device_fingerprint = Column(String(255), nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False, index=True)

    license = relationship("License", back_populates="validations")
