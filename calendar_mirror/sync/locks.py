"""Per-user advisory locks around writes to the local event mirror."""

import asyncio

# Guards the delete+insert pair of a reconciliation against concurrent CRUD writes.
_user_locks: dict[str, asyncio.Lock] = {}
_user_locks_guard = asyncio.Lock()


async def get_user_lock(user_id: str) -> asyncio.Lock:
    """Get or create the mirror lock for a user."""
    async with _user_locks_guard:
        if user_id not in _user_locks:
            _user_locks[user_id] = asyncio.Lock()
        return _user_locks[user_id]


def reset_user_locks() -> None:
    """Drop all locks (used when the event loop is replaced)."""
    _user_locks.clear()
