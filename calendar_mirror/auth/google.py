"""Google OAuth helpers."""

import logging
from typing import Optional
from urllib.parse import urlencode

import httpx

from calendar_mirror.config import get_redirect_uri, get_settings

logger = logging.getLogger(__name__)

# Google OAuth endpoints
GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/calendar.events",
]


class TokenRejectedError(ValueError):
    """Google refused the grant (revoked, expired or malformed refresh token)."""


class OAuthNotConfiguredError(ValueError):
    """The Google OAuth client id or secret is missing from the settings."""


def get_oauth_client() -> tuple[str, str]:
    """Get the configured OAuth client id and secret."""
    settings = get_settings()
    if not settings.google_client_id or not settings.google_client_secret:
        raise OAuthNotConfiguredError("Google OAuth client is not configured")
    return settings.google_client_id, settings.google_client_secret


def build_auth_url(
    client_id: str,
    redirect_uri: str,
    scopes: list[str],
    state: str,
    login_hint: Optional[str] = None,
    prompt: str = "consent"
) -> str:
    """Build Google OAuth authorization URL."""
    params = {
        "client_id": client_id,
        "redirect_uri": redirect_uri,
        "response_type": "code",
        "scope": " ".join(scopes),
        "access_type": "offline",
        "state": state,
        "prompt": prompt,
    }

    if login_hint:
        params["login_hint"] = login_hint

    return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"


def _raise_for_token_response(response: httpx.Response, action: str) -> None:
    if response.status_code == 200:
        return
    logger.error(f"Token {action} failed ({response.status_code}): {response.text}")
    if response.status_code in (400, 401):
        raise TokenRejectedError(f"Token {action} rejected: {response.text}")
    raise ValueError(f"Token {action} failed with status {response.status_code}")


async def exchange_code_for_tokens(code: str, redirect_uri: Optional[str] = None) -> dict:
    """Exchange an authorization code for a token set."""
    client_id, client_secret = get_oauth_client()

    async with httpx.AsyncClient() as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "code": code,
                "client_id": client_id,
                "client_secret": client_secret,
                "redirect_uri": redirect_uri or get_redirect_uri(),
                "grant_type": "authorization_code",
            },
        )

    _raise_for_token_response(response, "exchange")
    return response.json()


async def refresh_access_token(refresh_token: str) -> dict:
    """
    Refresh an access token.

    Raises TokenRejectedError when Google refuses the refresh token, and
    ValueError or httpx.HTTPError for failures worth retrying.
    """
    client_id, client_secret = get_oauth_client()

    async with httpx.AsyncClient() as client:
        response = await client.post(
            GOOGLE_TOKEN_URL,
            data={
                "refresh_token": refresh_token,
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "refresh_token",
            },
        )

    _raise_for_token_response(response, "refresh")
    return response.json()
