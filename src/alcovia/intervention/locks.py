"""
Per-student mutual exclusion.

Every state-machine operation for a student runs while holding that
student's lock, so status reads, verdict application and ticket writes
form one unit. Locks for different students are independent.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class StudentLockRegistry:
    """Hands out one ``asyncio.Lock`` per student id.

    Entries are reference counted and dropped once no task holds or waits
    on them, so the registry does not grow with the student population.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, student_id: str) -> AsyncIterator[None]:
        lock = self._locks.get(student_id)
        if lock is None:
            lock = self._locks[student_id] = asyncio.Lock()
        self._waiters[student_id] = self._waiters.get(student_id, 0) + 1

        try:
            async with lock:
                yield
        finally:
            self._waiters[student_id] -= 1
            if self._waiters[student_id] == 0:
                del self._waiters[student_id]
                del self._locks[student_id]

    def is_locked(self, student_id: str) -> bool:
        lock = self._locks.get(student_id)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
