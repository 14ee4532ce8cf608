"""
One processed Paddle transaction.

paddle_transaction_id is unique: together with the webhook event key it is what
keeps a redelivered transaction.completed from issuing a second license.
"""
from sqlalchemy import Column, Integer, String, Boolean, ForeignKey
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from .base import Base, JSONType, UTCDateTime


class PaddlePurchase(Base):
    __tablename__ = "paddle_purchases"

    id = Column(Integer, primary_key=True, index=True)
    paddle_transaction_id = Column(String(255), unique=True, nullable=False, index=True)
    paddle_customer_id = Column(String(255), nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    license_id = Column(Integer, ForeignKey("licenses.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    email_sent = Column(Boolean, nullable=False, default=False)
    email_sent_at = Column(UTCDateTime, nullable=True)
    paddle_data = Column(JSONType, nullable=True)
    created_at = Column(UTCDateTime, server_default=func.now(), nullable=False)

    license = relationship("License")
    user = relationship("User")
