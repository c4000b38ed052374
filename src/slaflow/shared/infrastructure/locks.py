"""
Per-key asyncio locks.

Every SLA timer mutation for a ticket goes through the lock returned for
that ticket id, whether it comes from a workflow node or a monitor sweep.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict


class TicketLockRegistry:
    """Hands out one asyncio.Lock per ticket id and forgets idle ones."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}
        self._waiters: Dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
