"""Request rate limiting."""

from slowapi import Limiter
from slowapi.util import get_remote_address

from calendar_mirror.config import get_settings

limiter = Limiter(key_func=get_remote_address)


def sync_rate_limit() -> str:
    """Limit for manual full syncs, read from settings on each request."""
    return f"{get_settings().sync_rate_limit_per_minute}/minute"
