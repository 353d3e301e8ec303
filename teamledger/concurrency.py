"""
Concurrency Primitives

KeyedLock   - one asyncio.Lock per key, created on demand and dropped when
              nobody holds or waits for it. Used to linearize ingestion per
              idempotency key and invoice numbering per team.
SingleFlight - at most one in-flight call per key; concurrent callers for
              the same key share the leader's result. Used so that a given
              inbox item is never analyzed twice at the same time.

Keys always start with a team id. There is no lock spanning teams.
"""

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Hashable, TypeVar


T = TypeVar("T")


class KeyedLock:
    """A family of asyncio locks addressed by key."""

    def __init__(self):
        self._locks: dict[Hashable, asyncio.Lock] = {}
        self._holders: Counter = Counter()

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._holders[key] += 1
        try:
            async with lock:
                yield
        finally:
            self._holders[key] -= 1
            if self._holders[key] <= 0:
                del self._holders[key]
                self._locks.pop(key, None)

    def locked(self, key: Hashable) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)


class SingleFlight:
    """Deduplicates concurrent calls per key."""

    def __init__(self):
        self._inflight: dict[Hashable, asyncio.Task] = {}

    def in_flight(self, key: Hashable) -> bool:
        return key in self._inflight

    async def do(self, key: Hashable, fn: Callable[[], Awaitable[T]]) -> T:
        """
        Run fn for key, or join the call already running for key.

        Followers wait through asyncio.shield, so a cancelled follower does
        not cancel the leader's work.
        """
        existing = self._inflight.get(key)
        if existing is not None:
            return await asyncio.shield(existing)

        task = asyncio.ensure_future(fn())
        self._inflight[key] = task
        try:
            return await task
        finally:
            if self._inflight.get(key) is task:
                del self._inflight[key]
