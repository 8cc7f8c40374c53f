"""
Server-side event logging helper.

Logs events to both the database (for querying) and structured logs (for immediate visibility).
"""
import logging
from typing import Optional, Dict, Any
from uuid import UUID
from sqlalchemy.orm import Session
from bookfeed.models import EventLog

logger = logging.getLogger(__name__)


def log_event(
    db: Session,
    event_name: str,
    user_id: Optional[UUID] = None,
    properties: Optional[Dict[str, Any]] = None,
    request_id: Optional[str] = None,
    session_id: Optional[str] = None,
) -> bool:
    """
    Log an event to the database and structured logs.

    Args:
        db: Database session
        event_name: Name of the event (e.g., "feed_impression")
        user_id: Optional user ID (UUID)
        properties: Optional dict of event properties
        request_id: Optional request ID for correlating events
        session_id: Optional session ID

    Returns:
        True if the event was flushed, False if logging failed.

    Note: This function does NOT commit the transaction. The caller should commit.
    On failure the session is rolled back so the caller's response path is unaffected.
    """
    try:
        event = EventLog(
            event_name=event_name,
            user_id=user_id,
            properties=properties,
            request_id=request_id,
            session_id=session_id,
        )
        db.add(event)
        db.flush()

        logger.info("event_logged", extra={
            "event_name": event_name,
            "user_id": str(user_id) if user_id else None,
            "request_id": request_id,
            "session_id": session_id,
            "properties": properties,
        })
        return True
    except Exception as e:
        # Never break the request path - log warning and continue
        logger.warning(
            "Failed to log event: event_name=%s, user_id=%s, error=%s",
            event_name,
            user_id,
            str(e),
            exc_info=True,
        )
        db.rollback()
        return False
