"""Authentication module."""

from calendar_mirror.auth.session import (
    create_session_token,
    verify_session_token,
    get_current_user,
    get_current_user_optional,
)

__all__ = [
    "create_session_token",
    "verify_session_token",
    "get_current_user",
    "get_current_user_optional",
]
