"""
Helper functions for mapping session-provider identities to local users.
"""
from sqlalchemy.orm import Session
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from bookfeed.models import User
import logging

logger = logging.getLogger(__name__)


def get_or_create_user_by_auth_id(
    db: Session,
    auth_user_id: str,
    email: str = "",
    endpoint_path: str = "",
) -> User:
    """
    Get or create the local User row for a session-provider subject.

    The provider is the source of truth for identity; the local row only exists
    so feeds, shelves and follows have something to key on.

    Lookup order:
    1. By auth_user_id.
    2. By email (case-insensitive) for a legacy row without auth_user_id,
       which is then linked.
    3. Otherwise a new row is created.

    Safe under concurrent first requests: an IntegrityError on insert means
    another request created the row, which is re-fetched.
    """
    normalized_email = email.lower().strip() if email else None

    user = db.query(User).filter(User.auth_user_id == auth_user_id).one_or_none()
    if user:
        return user

    if normalized_email:
        legacy = db.query(User).filter(
            func.lower(User.email) == normalized_email,
            User.auth_user_id.is_(None),
        ).one_or_none()
        if legacy:
            legacy.auth_user_id = auth_user_id
            db.commit()
            db.refresh(legacy)
            logger.info(
                "[USER_LINK] endpoint=%s linked legacy user_id=%s to auth_user_id=%s",
                endpoint_path, legacy.id, auth_user_id,
            )
            return legacy

    user = User(auth_user_id=auth_user_id, email=normalized_email)
    db.add(user)
    try:
        db.commit()
        db.refresh(user)
    except IntegrityError:
        db.rollback()
        user = db.query(User).filter(User.auth_user_id == auth_user_id).one_or_none()
        if user:
            return user
        raise
    logger.info("[USER_CREATE] endpoint=%s user_id=%s auth_user_id=%s", endpoint_path, user.id, auth_user_id)
    return user
