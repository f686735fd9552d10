"""Lock store used for deduplication and reply idempotency claims.

The lock store is the only state shared by concurrent workers. Every access
is an atomic claim-or-fail (``SET key value NX EX ttl`` on Redis) with an
explicit expiry; callers never read-then-write.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from typing import Protocol

import redis.asyncio as redis

logger = logging.getLogger(__name__)


class LockStore(Protocol):
    """Atomic key claims with expiry."""

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool: ...

    async def expire(self, key: str, ttl: float) -> bool: ...

    async def delete(self, key: str) -> bool: ...

    async def close(self) -> None: ...


class RedisLockStore:
    """Redis implementation of :class:`LockStore`."""

    def __init__(self, client: redis.Redis, prefix: str = "") -> None:
        self.redis = client
        self._prefix = prefix

    @classmethod
    def from_url(cls, url: str, prefix: str = "") -> RedisLockStore:
        return cls(redis.from_url(url, decode_responses=True), prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        acquired = await self.redis.set(
            self._key(key),
            value,
            nx=True,
            px=max(1, int(ttl * 1000)),
        )
        return bool(acquired)

    async def expire(self, key: str, ttl: float) -> bool:
        return bool(await self.redis.pexpire(self._key(key), max(1, int(ttl * 1000))))

    async def delete(self, key: str) -> bool:
        deleted = await self.redis.delete(self._key(key))
        if not deleted:
            logger.debug("No lock to release for %s (already expired)", key)
        return bool(deleted)

    async def close(self) -> None:
        await self.redis.aclose()


class InMemoryLockStore:
    """Single-process lock store for tests and local runs."""

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float]] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> tuple[str, float] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry[1] <= self._clock():
            del self._entries[key]
            return None
        return entry

    async def set_if_absent(self, key: str, value: str, ttl: float) -> bool:
        async with self._lock:
            if self._live(key) is not None:
                return False
            self._entries[key] = (value, self._clock() + ttl)
            return True

    async def expire(self, key: str, ttl: float) -> bool:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            self._entries[key] = (entry[0], self._clock() + ttl)
            return True

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    def get(self, key: str) -> str | None:
        entry = self._live(key)
        return entry[0] if entry else None

    async def close(self) -> None:
        self._entries.clear()
