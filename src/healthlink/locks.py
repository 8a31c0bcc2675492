"""
Per-key asyncio locks.

One lock per connector id, created on first use and dropped once no
coroutine holds or waits on it, so the table only holds ids in use.
"""

from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator
import asyncio


class KeyedLocks:
    """Serialize work per key within one event loop."""

    def __init__(self):
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: Counter[str] = Counter()

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] <= 0:
                del self._users[key]
                self._locks.pop(key, None)

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks
