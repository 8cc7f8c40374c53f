"""
Authentication helpers for verifying bearer JWTs and resolving the current app User.
"""

from __future__ import annotations

import logging
from typing import Dict, Any

from fastapi import Depends, HTTPException, Request, status
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from bookfeed.core.config import settings
from bookfeed.database import get_db
from bookfeed.models import User
from bookfeed.core.user_helpers import get_or_create_user_by_auth_id

logger = logging.getLogger(__name__)


def _unauthorized(detail: str = "Not authenticated") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def _extract_bearer_token(request: Request) -> str:
    """
    Extract 'Bearer <token>' from Authorization header.
    """
    auth = request.headers.get("Authorization")
    if not auth:
        raise _unauthorized("Missing Authorization header")

    parts = auth.split()
    if len(parts) != 2:
        raise _unauthorized("Invalid Authorization header format. Expected 'Bearer <token>'")

    scheme, token = parts
    if scheme.lower() != "bearer":
        raise _unauthorized("Invalid auth scheme. Expected 'Bearer'")

    return token


def decode_access_token(token: str) -> Dict[str, Any]:
    """
    Decode and validate an access token issued by the session provider.

    Audience is only checked when JWT_AUDIENCE is configured.
    """
    try:
        settings.require_jwt_secret()
    except RuntimeError as e:
        logger.error(f"JWT configuration missing: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured.",
        )

    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            audience=settings.JWT_AUDIENCE,
            options={"verify_aud": settings.JWT_AUDIENCE is not None},
        )
    except JWTError as e:
        logger.warning(f"JWT validation failed: {e}")
        raise _unauthorized("Token validation failed")


def get_current_user(
    request: Request,
    db: Session = Depends(get_db),
) -> User:
    """
    FastAPI dependency: returns the current authenticated User (SQLAlchemy object).

    - Reads Authorization: Bearer <token>
    - Verifies JWT
    - Resolves sub (provider user id) to the local users row, creating it on first sight
    """
    token = _extract_bearer_token(request)
    payload = decode_access_token(token)

    auth_user_id = payload.get("sub")
    if not auth_user_id:
        raise _unauthorized("Token missing subject (sub)")

    return get_or_create_user_by_auth_id(
        db=db,
        auth_user_id=str(auth_user_id),
        email=str(payload.get("email") or ""),
        endpoint_path=f"{request.method} {request.url.path}",
    )
