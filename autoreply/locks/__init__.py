"""Lock store implementations."""

from __future__ import annotations

from .store import InMemoryLockStore, LockStore, RedisLockStore

__all__ = ["InMemoryLockStore", "LockStore", "RedisLockStore"]
