from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, JSONType, UTCDateTime


class RevenueCatMigration(Base):
    """A RevenueCat account converted to a license. At most one per RevenueCat user."""
    __tablename__ = "revenuecat_migrations"

    id = Column(Integer, primary_key=True, index=True)
    revenuecat_user_id = Column(String(255), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    subscription_type = Column(String(20), nullable=False)  # lifetime | annual
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(UTCDateTime, nullable=True)
    revenuecat_data = Column(JSONType, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    license = relationship("License")
    user = relationship("User")
