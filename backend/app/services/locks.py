"""Per-key asyncio locks.

Ingestion for one three-phase parent and reset/restore for one meter must not
interleave within this process. Locks are created on demand and dropped once
nobody holds or waits for them.
"""
import asyncio
from collections.abc import Iterable
from contextlib import AsyncExitStack, asynccontextmanager


class KeyedLocks:

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str):
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

    @asynccontextmanager
    async def hold_many(self, keys: Iterable[str]):
        """Acquire several keys in sorted order so two callers never deadlock."""
        async with AsyncExitStack() as stack:
            for key in sorted(set(keys)):
                await stack.enter_async_context(self.hold(key))
            yield


ingest_locks = KeyedLocks()
ledger_locks = KeyedLocks()
