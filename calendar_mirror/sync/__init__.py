"""Calendar sync engine module."""

from calendar_mirror.sync.orchestrator import (
    run_sync,
    request_sync,
    sync_calendar,
)
from calendar_mirror.sync.propagation import (
    on_create,
    on_update,
    on_delete,
)

__all__ = [
    "run_sync",
    "request_sync",
    "sync_calendar",
    "on_create",
    "on_update",
    "on_delete",
]
