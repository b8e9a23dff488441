"""Per-key asyncio locks acquired in a fixed order."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class KeyedLock:
    """One asyncio.Lock per key, created on demand and dropped once nobody holds or waits on it.

    `acquire(*keys)` takes the distinct keys in sorted order, so two callers locking the
    same pair of accounts in opposite directions cannot deadlock.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def _checkout(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._waiters[key] = self._waiters.get(key, 0) + 1
        return lock

    def _checkin(self, key: str) -> None:
        self._waiters[key] -= 1
        if self._waiters[key] == 0:
            del self._waiters[key]
            del self._locks[key]

    @asynccontextmanager
    async def acquire(self, *keys: str) -> AsyncIterator[None]:
        ordered = sorted(set(keys))
        held: list[asyncio.Lock] = []
        locks = [self._checkout(k) for k in ordered]
        try:
            for lock in locks:
                await lock.acquire()
                held.append(lock)
            yield
        finally:
            for lock in reversed(held):
                lock.release()
            for k in ordered:
                self._checkin(k)

    def __len__(self) -> int:
        return len(self._locks)
