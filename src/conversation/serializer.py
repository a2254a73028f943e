"""Per-user event ordering.

Each user gets one FIFO lock; an event holds it for the whole time it is
being handled, external awaits included. Events from different users
never wait on each other. Locks are dropped once nobody holds or waits.
"""

from __future__ import annotations

import asyncio
import contextlib
from collections.abc import AsyncIterator


class KeyedSerializer:
    """asyncio.Lock per key, created on demand and discarded when idle."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @contextlib.asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Wait for this key's turn (FIFO), then run the body exclusively."""
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def busy(self, key: str) -> bool:
        """True while an event for ``key`` is running or queued."""
        return key in self._users

    def __len__(self) -> int:
        return len(self._locks)
