"""
api/auth.py

Password login and HS256 bearer tokens (PyJWT).

The signing key comes from Settings.jwt_signing_key: JWT_SECRET if set,
otherwise derived from PASSWORD. With no PASSWORD configured every login
fails and every token is rejected.
"""

from __future__ import annotations

import hmac
import logging
from datetime import datetime, timedelta, timezone
from typing import Annotated

import jwt
from fastapi import Depends, Header

from ..config import Settings
from ..errors import AuthError
from .deps import get_settings

logger = logging.getLogger(__name__)


def check_password(password: str, settings: Settings) -> bool:
    if not settings.PASSWORD:
        return False
    return hmac.compare_digest(password.encode(), settings.PASSWORD.encode())


def create_token(settings: Settings, user_id: str = "admin") -> str:
    """Create a signed token that expires after JWT_EXPIRE_MINUTES."""
    key = settings.jwt_signing_key
    if not key:
        raise AuthError("authentication is not configured")
    now = datetime.now(timezone.utc)
    claims = {
        "user_id": user_id,
        "iat": now,
        "exp": now + timedelta(minutes=settings.JWT_EXPIRE_MINUTES),
    }
    return jwt.encode(claims, key, algorithm=settings.JWT_ALGORITHM)


def verify_token(token: str, settings: Settings) -> dict | None:
    """Return the token's claims, or None if it is invalid or expired."""
    key = settings.jwt_signing_key
    if not key:
        return None
    try:
        return jwt.decode(token, key, algorithms=[settings.JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        logger.debug("Token rejected: %s", exc)
        return None


def require_token(
    settings: Annotated[Settings, Depends(get_settings)],
    authorization: Annotated[str | None, Header()] = None,
) -> dict:
    """FastAPI dependency guarding every dashboard route."""
    if not authorization:
        raise AuthError("missing bearer token")
    if not authorization.startswith("Bearer "):
        raise AuthError("malformed authorization header")
    claims = verify_token(authorization[7:], settings)
    if claims is None:
        raise AuthError("invalid or expired token")
    return claims
