"""Error taxonomy for sync runs and local event mutations."""

from typing import Optional


class SyncError(Exception):
    """Base class for calendar sync and mirror errors."""


class CredentialNotFound(SyncError):
    """The user has not connected the remote calendar service."""

    def __init__(self, user_id: str, service: str):
        super().__init__(f"No {service} credential for user {user_id}")
        self.user_id = user_id
        self.service = service


class AuthExpired(SyncError):
    """The credential was rejected or revoked and needs a new consent."""

    def __init__(self, user_id: str, reason: str = "credential rejected"):
        super().__init__(f"Credential for user {user_id} expired: {reason}")
        self.user_id = user_id
        self.reason = reason


class CalendarListError(SyncError):
    """Enumerating the user's calendars failed; nothing can be synced."""


class PerCalendarSyncError(SyncError):
    """Fetch, normalize or reconcile failed for a single calendar."""

    def __init__(self, calendar_id: str, message: str):
        super().__init__(f"Calendar {calendar_id}: {message}")
        self.calendar_id = calendar_id


class RemotePropagationError(SyncError):
    """A best-effort push of a local change to the provider failed."""

    def __init__(self, operation: str, message: str, external_id: Optional[str] = None):
        super().__init__(f"Remote {operation} failed: {message}")
        self.operation = operation
        self.external_id = external_id


class NotFoundError(SyncError):
    """A local event does not exist for this user."""

    def __init__(self, event_id: int):
        super().__init__(f"Event {event_id} not found")
        self.event_id = event_id


class ValidationError(SyncError):
    """Event input is missing required fields or is inconsistent."""
