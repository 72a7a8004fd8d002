"""Application configuration management."""

import hashlib
import logging
import os
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    database_path: str = "/data/calendar-mirror.db"

    # Encryption
    encryption_key_file: str = "/secrets/encryption.key"

    # Server
    public_url: str = "http://localhost:3000"
    log_level: str = "info"

    # Session
    session_secret_key: Optional[str] = None  # Derived from encryption key if not set
    session_expire_days: int = 7

    # Google OAuth client
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: Optional[str] = None  # Defaults to {public_url}/oauth/callback

    # Rate limiting
    sync_rate_limit_per_minute: int = 30

    # Sync settings
    sync_window_past_months: int = 3
    sync_window_future_months: int = 6
    sync_max_results: int = 250
    sync_max_concurrency: int = 4
    sync_debounce_ms: int = 500
    token_refresh_skew_minutes: int = 5
    oauth_state_ttl_minutes: int = 10

    # Remote calendar defaults
    default_calendar_id: str = "primary"
    default_timezone: str = "UTC"
    default_reminder_minutes: int = 10
    default_event_color: str = "#3B82F6"
    default_event_flag: str = "personal"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_encryption_key() -> bytes:
    """Load the token encryption key from file."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        raise RuntimeError(f"Encryption key file not found at {key_file}")

    with open(key_file, "rb") as f:
        key = f.read()
        # Only strip trailing newlines added by editors, binary keys may contain whitespace bytes
        while key and key[-1:] in (b"\n", b"\r"):
            key = key[:-1]

    # Generated key files hold the key hex-encoded
    if len(key) == 64:
        try:
            key = bytes.fromhex(key.decode("ascii"))
        except ValueError:
            pass

    if len(key) < 32:
        raise RuntimeError("Invalid encryption key: must be at least 32 bytes")

    return key


def ensure_encryption_key() -> bytes:
    """Load the encryption key, generating the key file on first start."""
    settings = get_settings()
    key_file = settings.encryption_key_file

    if not os.path.exists(key_file):
        from calendar_mirror.encryption import generate_encryption_key

        key_dir = os.path.dirname(key_file)
        if key_dir:
            os.makedirs(key_dir, exist_ok=True)
        with open(key_file, "wb") as f:
            f.write(generate_encryption_key().hex().encode("ascii") + b"\n")
        os.chmod(key_file, 0o600)
        logger.warning(f"Generated new encryption key at {key_file}")

    return get_encryption_key()


def get_session_secret() -> str:
    """Get session secret key, derived from encryption key if not set."""
    settings = get_settings()
    if settings.session_secret_key:
        return settings.session_secret_key

    key = get_encryption_key()
    return hashlib.sha256(key + b"session_secret").hexdigest()


def get_redirect_uri() -> str:
    """Absolute OAuth redirect URI registered with Google."""
    settings = get_settings()
    if settings.google_redirect_uri:
        return settings.google_redirect_uri
    return settings.public_url.rstrip("/") + "/oauth/callback"
