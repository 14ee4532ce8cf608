from sqlalchemy import Column, Integer, String, Boolean
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, UTCDateTime


class User(Base):
    """License holder, identified by email"""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    name = Column(String(255), nullable=True)
    marketing_consent = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)
    updated_at = Column(UTCDateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    licenses = relationship("License", back_populates="user", cascade="all, delete-orphan")
