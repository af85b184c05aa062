from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class SubmissionLockManager:
    """One asyncio lock per submission; every append runs inside ``hold``.

    A lock is dropped once its last holder or waiter leaves, so the map only
    tracks submissions with an append in flight.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._holders: dict[str, int] = {}

    def lock_for(self, submission_id: str) -> asyncio.Lock:
        lock = self._locks.get(submission_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[submission_id] = lock
        return lock

    @asynccontextmanager
    async def hold(self, submission_id: str) -> AsyncIterator[None]:
        lock = self.lock_for(submission_id)
        self._holders[submission_id] = self._holders.get(submission_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            remaining = self._holders[submission_id] - 1
            if remaining:
                self._holders[submission_id] = remaining
            else:
                del self._holders[submission_id]
                self._locks.pop(submission_id, None)

    @property
    def size(self) -> int:
        return len(self._locks)
