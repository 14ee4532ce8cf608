"""
RevenueCat account migration.

The desktop app calls this once with the signed-in RevenueCat user id; eligible
customers receive a license key by email.
"""
import logging
from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from license_server.database import get_db
from license_server.schemas.migrations import MigrationRequest, MigrationResponse
from license_server.services.migrations import migrate_revenuecat_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/revenuecat", tags=["RevenueCat"])


@router.post("/migrate", response_model=MigrationResponse)
def migrate(
    data: MigrationRequest,
    db: Session = Depends(get_db),
):
    logger.info("Migration requested for RevenueCat user %s", data.user_id)
    return migrate_revenuecat_user(db, data.email, data.user_id)
