"""Priority job queue consumed by the worker pool."""

from __future__ import annotations

from typing import Protocol

from .jobs import (
    SLA_TARGETS_MS,
    DeadLetter,
    Job,
    Lease,
    Priority,
    PrioritySignals,
    QueuedJob,
    QueueStats,
    determine_priority,
    sla_target_ms,
)
from .memory import InMemoryJobQueue
from .redis_queue import RedisJobQueue


class JobQueue(Protocol):
    """Priority queue with leased, at-least-once delivery to workers."""

    async def enqueue(self, job: Job) -> bool: ...

    async def claim(self, timeout: float | None = None) -> Lease | None: ...

    async def ack(self, lease: Lease) -> bool: ...

    async def retry(self, lease: Lease, delay: float, error: str | None = None) -> bool: ...

    async def dead_letter(self, lease: Lease, error: str) -> bool: ...

    async def dead_letters(self) -> list[DeadLetter]: ...

    async def stats(self) -> QueueStats: ...

    async def close(self) -> None: ...


__all__ = [
    "SLA_TARGETS_MS",
    "DeadLetter",
    "InMemoryJobQueue",
    "Job",
    "JobQueue",
    "Lease",
    "Priority",
    "PrioritySignals",
    "QueueStats",
    "QueuedJob",
    "RedisJobQueue",
    "determine_priority",
    "sla_target_ms",
]
