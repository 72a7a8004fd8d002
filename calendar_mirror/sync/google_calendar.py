"""Google Calendar API wrapper."""

import logging
from datetime import datetime

from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

logger = logging.getLogger(__name__)


class GoogleCalendarClient:
    """
    Credential-scoped wrapper around the Calendar v3 API.

    The underlying service object is not thread-safe, so callers that fan out
    across worker threads build one client per task.
    """

    def __init__(self, access_token: str):
        """Initialize with access token."""
        self.credentials = Credentials(token=access_token)
        self.service = build(
            "calendar", "v3", credentials=self.credentials, cache_discovery=False
        )

    def list_calendars(self) -> list[dict]:
        """List all calendars the user has access to, in provider order."""
        calendars = []
        page_token = None

        while True:
            params = {}
            if page_token:
                params["pageToken"] = page_token

            result = self.service.calendarList().list(**params).execute()
            calendars.extend(result.get("items", []))

            page_token = result.get("nextPageToken")
            if not page_token:
                break

        return calendars

    def list_events(
        self,
        calendar_id: str,
        time_min: datetime,
        time_max: datetime,
        max_results: int = 250,
    ) -> list[dict]:
        """
        List expanded event instances of a calendar inside [time_min, time_max].

        Only the first page is read; max_results caps the result size.
        """
        result = self.service.events().list(
            calendarId=calendar_id,
            timeMin=time_min.isoformat(),
            timeMax=time_max.isoformat(),
            maxResults=max_results,
            singleEvents=True,
            orderBy="startTime",
        ).execute()

        if result.get("nextPageToken"):
            logger.info(f"Calendar {calendar_id} has more than {max_results} events in window, truncated")

        return result.get("items", [])

    def insert_event(self, calendar_id: str, event_data: dict) -> dict:
        """Create an event on a calendar."""
        return self.service.events().insert(
            calendarId=calendar_id,
            body=event_data,
        ).execute()

    def update_event(self, calendar_id: str, event_id: str, event_patch: dict) -> dict:
        """Patch (partial update) an event."""
        return self.service.events().patch(
            calendarId=calendar_id,
            eventId=event_id,
            body=event_patch,
        ).execute()

    def delete_event(self, calendar_id: str, event_id: str) -> bool:
        """Delete an event."""
        try:
            self.service.events().delete(
                calendarId=calendar_id,
                eventId=event_id,
            ).execute()
            return True
        except HttpError as e:
            if e.resp.status in (404, 410):
                # Already deleted
                return True
            raise
