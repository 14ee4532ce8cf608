# Database models
from .base import Base
from .user import User
from .license import License, LicenseStatus, LicenseActivation, LicenseValidation
from .paddle_purchase import PaddlePurchase
from .revenuecat_migration import RevenueCatMigration
from .webhook_event import WebhookEvent, WebhookStatus
from .email_queue import EmailQueueItem, EmailStatus

__all__ = [
    "Base",
    "User",
    "License",
    "LicenseStatus",
    "LicenseActivation",
    "LicenseValidation",
    "PaddlePurchase",
    "RevenueCatMigration",
    "WebhookEvent",
    "WebhookStatus",
    "EmailQueueItem",
    "EmailStatus",
]
