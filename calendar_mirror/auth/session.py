"""Session management using JWT tokens."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from fastapi import HTTPException, Request, status
from jose import JWTError, jwt
from pydantic import BaseModel

from calendar_mirror.config import get_session_secret, get_settings

logger = logging.getLogger(__name__)

ALGORITHM = "HS256"
SESSION_COOKIE_NAME = "session"


class SessionData(BaseModel):
    """Session data stored in JWT."""
    user_id: str
    exp: datetime


class User(BaseModel):
    """Resolved identity of an authenticated request."""
    id: str


def create_session_token(user_id: str, expire_days: Optional[int] = None) -> str:
    """Create a JWT session token for an already resolved user id."""
    settings = get_settings()
    secret = get_session_secret()

    days = settings.session_expire_days if expire_days is None else expire_days
    expire = datetime.now(timezone.utc) + timedelta(days=days)
    data = {
        "user_id": user_id,
        "exp": expire,
    }

    return jwt.encode(data, secret, algorithm=ALGORITHM)


def verify_session_token(token: str) -> Optional[SessionData]:
    """Verify and decode a session token."""
    try:
        secret = get_session_secret()
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
        return SessionData(**payload)
    except JWTError as e:
        logger.warning(f"Invalid session token: {e}")
        return None


def _request_token(request: Request) -> Optional[str]:
    token = request.cookies.get(SESSION_COOKIE_NAME)
    if token:
        return token

    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials.strip()
    return None


async def get_current_user_optional(request: Request) -> Optional[User]:
    """Get current user from the session cookie or bearer token, None if not authenticated."""
    token = _request_token(request)
    if not token:
        return None

    session = verify_session_token(token)
    if not session or not session.user_id:
        return None

    return User(id=session.user_id)


async def get_current_user(request: Request) -> User:
    """Get current user from session, raises 401 if not authenticated."""
    user = await get_current_user_optional(request)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
