import logging
from typing import Optional

from sqlalchemy.orm import Session

from license_server.models.user import User

logger = logging.getLogger(__name__)


def normalize_email(email: str) -> str:
    return email.strip().lower()


def find_or_create_user(
    db: Session,
    email: str,
    name: Optional[str] = None,
    marketing_consent: Optional[bool] = None,
) -> User:
    """
    Look up a user by email, creating it when missing. Flushes, never commits.

    When marketing_consent is given and differs from the stored value, the
    stored value is updated; None leaves it untouched.
    """
    email = normalize_email(email)
    user = db.query(User).filter(User.email == email).first()

    if user is None:
        user = User(email=email, name=name, marketing_consent=bool(marketing_consent))
        db.add(user)
        db.flush()
        logger.info("Created user %s (%s)", user.id, email)
        return user

    if marketing_consent is not None and user.marketing_consent != marketing_consent:
        user.marketing_consent = marketing_consent
        db.flush()
        logger.info("Updated marketing consent for user %s to %s", user.id, marketing_consent)

    return user
