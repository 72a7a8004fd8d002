"""Stored calendar API endpoints."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from calendar_mirror.auth.session import User, get_current_user
from calendar_mirror.sync.calendars import list_stored_calendars, update_calendar_settings

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/calendars", tags=["calendars"])


class CalendarResponse(BaseModel):
    """Calendar response model."""
    external_id: str
    name: str
    description: str = ""
    color: Optional[str] = None
    background_color: Optional[str] = None
    foreground_color: Optional[str] = None
    is_primary: bool = False
    access_role: str = "reader"
    timezone: str = "UTC"
    is_visible: bool = True
    is_selected: bool = True
    color_override: Optional[str] = None


class CalendarSettingsRequest(BaseModel):
    """Display preferences for a calendar."""
    is_visible: Optional[bool] = None
    is_selected: Optional[bool] = None
    color_override: Optional[str] = None


def _calendar_response(row: dict) -> CalendarResponse:
    return CalendarResponse(
        external_id=row["external_id"],
        name=row["name"],
        description=row["description"] or "",
        color=row["color_override"] or row["color"],
        background_color=row["background_color"],
        foreground_color=row["foreground_color"],
        is_primary=bool(row["is_primary"]),
        access_role=row["access_role"] or "reader",
        timezone=row["timezone"] or "UTC",
        is_visible=bool(row["is_visible"]),
        is_selected=bool(row["is_selected"]),
        color_override=row["color_override"],
    )


@router.get("", response_model=list[CalendarResponse])
async def list_calendars(user: User = Depends(get_current_user)):
    """List the calendars seen by the last sync, primary first."""
    rows = await list_stored_calendars(user.id)
    return [_calendar_response(row) for row in rows]


@router.put("/{external_id:path}", response_model=CalendarResponse)
async def update_calendar(
    external_id: str,
    request: CalendarSettingsRequest,
    user: User = Depends(get_current_user),
):
    """Update visibility, selection or color of a calendar."""
    row = await update_calendar_settings(
        user.id, external_id, request.model_dump(exclude_unset=True)
    )
    if not row:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Calendar not found"
        )

    logger.info(f"Updated settings of calendar {external_id} for user {user.id}")
    return _calendar_response(row)
