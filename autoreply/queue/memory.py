"""In-process priority queue backed by per-class deques."""

from __future__ import annotations

import asyncio
import heapq
import itertools
import time
from collections import deque
from collections.abc import Callable
from uuid import uuid4

from .jobs import DeadLetter, Job, Lease, Priority, QueuedJob, QueueStats


class InMemoryJobQueue:
    """Single-process :class:`~autoreply.queue.JobQueue` implementation.

    Ready jobs live in one FIFO deque per priority class. Claimed jobs are
    tracked with a visibility deadline; a lease that is neither acked nor
    retried before its deadline is returned to the front of its class.
    """

    def __init__(
        self,
        visibility_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.visibility_timeout = visibility_timeout
        self._clock = clock
        self._ready: dict[Priority, deque[QueuedJob]] = {p: deque() for p in Priority}
        self._delayed: list[tuple[float, int, QueuedJob]] = []
        self._in_flight: dict[str, tuple[QueuedJob, float]] = {}
        self._known: set[str] = set()
        self._dead: list[DeadLetter] = []
        self._seq = itertools.count()
        self._condition: asyncio.Condition | None = None

    def _cond(self) -> asyncio.Condition:
        if self._condition is None:
            self._condition = asyncio.Condition()
        return self._condition

    async def _notify(self) -> None:
        cond = self._cond()
        async with cond:
            cond.notify_all()

    # Producer side -----------------------------------------------------------
    async def enqueue(self, job: Job) -> bool:
        """Add ``job``; returns ``False`` when a job with the same id is live."""

        if job.job_id in self._known:
            return False
        self._known.add(job.job_id)
        self._ready[job.priority].append(QueuedJob(job=job))
        await self._notify()
        return True

    # Consumer side -----------------------------------------------------------
    def _housekeep(self) -> None:
        now = self._clock()
        while self._delayed and self._delayed[0][0] <= now:
            _, _, queued = heapq.heappop(self._delayed)
            self._ready[queued.job.priority].append(queued)
        expired = [
            token for token, (_, deadline) in self._in_flight.items() if deadline <= now
        ]
        # newest first so appendleft keeps the original claim order
        for token in reversed(expired):
            queued, _ = self._in_flight.pop(token)
            self._ready[queued.job.priority].appendleft(queued)

    def _pop_ready(self) -> QueuedJob | None:
        for priority in Priority:
            bucket = self._ready[priority]
            if bucket:
                return bucket.popleft()
        return None

    def _next_wakeup(self) -> float | None:
        candidates = [deadline for _, deadline in self._in_flight.values()]
        if self._delayed:
            candidates.append(self._delayed[0][0])
        return min(candidates) if candidates else None

    def claim_nowait(self) -> Lease | None:
        self._housekeep()
        queued = self._pop_ready()
        if queued is None:
            return None
        token = uuid4().hex
        deadline = self._clock() + self.visibility_timeout
        self._in_flight[token] = (queued, deadline)
        return Lease(queued=queued, token=token, deadline=deadline)

    async def claim(self, timeout: float | None = None) -> Lease | None:
        """Claim the oldest job of the highest ready class.

        Waits up to ``timeout`` seconds (forever when ``None``) for a job to
        become ready.
        """

        loop = asyncio.get_running_loop()
        give_up = None if timeout is None else loop.time() + timeout
        cond = self._cond()
        while True:
            lease = self.claim_nowait()
            if lease is not None:
                return lease
            wait_for: float | None = None
            wakeup = self._next_wakeup()
            if wakeup is not None:
                wait_for = max(0.0, wakeup - self._clock())
            if give_up is not None:
                remaining = give_up - loop.time()
                if remaining <= 0:
                    return None
                wait_for = remaining if wait_for is None else min(wait_for, remaining)
            async with cond:
                try:
                    await asyncio.wait_for(cond.wait(), timeout=wait_for)
                except asyncio.TimeoutError:
                    pass

    async def ack(self, lease: Lease) -> bool:
        entry = self._in_flight.pop(lease.token, None)
        if entry is None:
            return False
        self._known.discard(lease.job.job_id)
        return True

    async def retry(self, lease: Lease, delay: float, error: str | None = None) -> bool:
        entry = self._in_flight.pop(lease.token, None)
        if entry is None:
            return False
        queued = entry[0].next_attempt(error)
        if delay <= 0:
            self._ready[queued.job.priority].append(queued)
        else:
            heapq.heappush(
                self._delayed, (self._clock() + delay, next(self._seq), queued)
            )
        await self._notify()
        return True

    async def dead_letter(self, lease: Lease, error: str) -> bool:
        entry = self._in_flight.pop(lease.token, None)
        if entry is None:
            return False
        self._known.discard(lease.job.job_id)
        self._dead.append(
            DeadLetter(
                job=lease.job,
                attempts=lease.attempt,
                error=error,
                failed_at=time.time(),
            )
        )
        return True

    async def dead_letters(self) -> list[DeadLetter]:
        return list(self._dead)

    async def stats(self) -> QueueStats:
        self._housekeep()
        by_priority = {p.name: len(self._ready[p]) for p in Priority}
        return QueueStats(
            waiting=sum(by_priority.values()),
            delayed=len(self._delayed),
            in_flight=len(self._in_flight),
            dead=len(self._dead),
            waiting_by_priority=by_priority,
        )

    async def close(self) -> None:
        return None
