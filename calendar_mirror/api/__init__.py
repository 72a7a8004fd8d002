"""API endpoints module."""

from fastapi import APIRouter

from calendar_mirror.api.calendars import router as calendars_router
from calendar_mirror.api.events import router as events_router
from calendar_mirror.api.sync import router as sync_router

api_router = APIRouter(prefix="/api")

api_router.include_router(sync_router)
api_router.include_router(events_router)
api_router.include_router(calendars_router)

__all__ = ["api_router"]
