"""Data models shared by the sync engine and the event API."""

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, model_validator

EventSource = Literal["local", "remote"]


class Credential(BaseModel):
    """Decrypted OAuth credential for one (user, service) pair."""
    user_id: str
    service: str
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    last_sync_at: Optional[datetime] = None
    is_valid: bool = True


class RemoteCalendar(BaseModel):
    """A calendar as enumerated from the provider for the current run."""
    external_id: str
    display_name: str
    color_hex: str
    access_role: str = "reader"
    is_primary: bool = False
    description: str = ""
    background_color: Optional[str] = None
    foreground_color: Optional[str] = None
    time_zone: str = "UTC"


class CanonicalEvent(BaseModel):
    """
    Internal event shape, independent of where the event came from.

    Remote-origin rows always carry both external identifiers; local-origin
    rows only gain them after a successful push to the provider.
    """
    local_id: Optional[int] = None
    user_id: str
    external_id: Optional[str] = None
    external_calendar_id: Optional[str] = None
    title: str
    description: str = ""
    start_time: str
    end_time: str
    all_day: bool = False
    location: str = ""
    attendees: str = ""
    status: str = "confirmed"
    source: EventSource
    flag: Optional[str] = None
    color: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    @model_validator(mode="after")
    def _remote_rows_have_identity(self) -> "CanonicalEvent":
        if self.source == "remote" and not (self.external_id and self.external_calendar_id):
            raise ValueError("remote events require external_id and external_calendar_id")
        return self

    @classmethod
    def from_row(cls, row) -> "CanonicalEvent":
        """Build an event from a calendar_events row."""
        return cls(
            local_id=row["id"],
            user_id=row["user_id"],
            external_id=row["external_id"],
            external_calendar_id=row["external_calendar_id"],
            title=row["title"],
            description=row["description"] or "",
            start_time=row["start_time"],
            end_time=row["end_time"],
            all_day=bool(row["all_day"]),
            location=row["location"] or "",
            attendees=row["attendees"] or "",
            status=row["status"] or "confirmed",
            source=row["source"],
            flag=row["flag"],
            color=row["color"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


class ReconcileResult(BaseModel):
    """Outcome of replacing one calendar's remote-origin partition."""
    inserted: int = 0
    deleted: int = 0
    error: Optional[str] = None


class CalendarSyncResult(BaseModel):
    """Per-calendar outcome inside a sync run."""
    calendar_id: str
    calendar_name: str
    event_count: int = 0
    success: bool
    error: Optional[str] = None


class SyncRun(BaseModel):
    """Result of one enumerate, fetch and reconcile pass for a user."""
    user_id: str
    started_at: datetime
    per_calendar_results: list[CalendarSyncResult] = []
    total_synced: int = 0
    completed_at: Optional[datetime] = None

    @property
    def calendars_count(self) -> int:
        return len(self.per_calendar_results)

    @property
    def failed_calendars(self) -> list[CalendarSyncResult]:
        return [r for r in self.per_calendar_results if not r.success]


class PropagationResult(BaseModel):
    """Remote-side outcome of a local mutation, reported next to the local commit."""
    status: Literal["synced", "skipped", "failed"]
    external_id: Optional[str] = None
    external_calendar_id: Optional[str] = None
    error: Optional[str] = None
