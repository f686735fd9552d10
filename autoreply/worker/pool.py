"""Fixed-size asyncio worker pool draining the reply queue."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Optional

from ..errors import RetryableJobError
from ..queue import JobQueue, Lease
from ..queue.jobs import sla_target_ms
from .pipeline import OutcomeStatus, PipelineOutcome, WorkerPipeline

logger = logging.getLogger(__name__)


@dataclass
class PoolMetrics:
    processed: int = 0
    failed: int = 0
    retried: int = 0
    dead_lettered: int = 0
    sla_breaches: int = 0
    total_processing_ms: float = 0.0

    @property
    def average_processing_ms(self) -> float:
        handled = self.processed + self.failed
        return round(self.total_processing_ms / handled, 2) if handled else 0.0

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["average_processing_ms"] = self.average_processing_ms
        return data


def backoff_delay(base: float, attempt: int) -> float:
    """Exponential backoff: ``base * 2 ** (attempt - 1)``."""

    return base * 2 ** (attempt - 1)


class WorkerPool:
    """Run ``concurrency`` workers that claim leases and run the pipeline.

    Each worker handles one job at a time and always finishes it; ``stop``
    waits for in-flight jobs instead of cancelling them.
    """

    def __init__(
        self,
        queue: JobQueue,
        pipeline: WorkerPipeline,
        *,
        concurrency: int = 10,
        max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        claim_timeout: float = 1.0,
    ) -> None:
        self.queue = queue
        self.pipeline = pipeline
        self.concurrency = max(1, concurrency)
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = backoff_seconds
        self.claim_timeout = claim_timeout
        self.metrics = PoolMetrics()
        self._tasks: list[asyncio.Task[None]] = []
        self._stopping: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        loop = asyncio.get_running_loop()
        self._tasks = [
            loop.create_task(self._work(index), name=f"autoreply-worker-{index}")
            for index in range(self.concurrency)
        ]
        logger.info("started %d workers", self.concurrency)

    async def stop(self) -> None:
        if self._stopping is not None:
            self._stopping.set()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        logger.info("workers stopped", extra=self.metrics.as_dict())

    async def _work(self, index: int) -> None:
        assert self._stopping is not None
        while not self._stopping.is_set():
            try:
                lease = await self.queue.claim(timeout=self.claim_timeout)
            except Exception:
                logger.exception("worker %d could not claim a job", index)
                await asyncio.sleep(self.claim_timeout)
                continue
            if lease is None:
                continue
            try:
                await self.handle(lease)
            except Exception:
                # queue bookkeeping failed; the lease expires and the job is redelivered
                logger.exception(
                    "worker %d lost job %s", index, lease.job.job_id,
                    extra={"job_id": lease.job.job_id},
                )

    async def run_once(self, timeout: float | None = 0) -> Optional[PipelineOutcome]:
        """Claim and handle a single job, if one is ready."""

        lease = await self.queue.claim(timeout=timeout)
        if lease is None:
            return None
        return await self.handle(lease)

    async def handle(self, lease: Lease) -> Optional[PipelineOutcome]:
        job = lease.job
        context = {
            "tenant_id": job.tenant_id,
            "conversation_id": job.conversation_id,
            "job_id": job.job_id,
            "priority": job.priority.name,
            "attempt": lease.attempt,
        }
        started = time.perf_counter()
        try:
            outcome = await self.pipeline.process(job, lease.attempt)
        except RetryableJobError as exc:
            self.metrics.total_processing_ms += (time.perf_counter() - started) * 1000
            if lease.attempt >= self.max_attempts:
                await self.queue.dead_letter(lease, str(exc))
                self.metrics.failed += 1
                self.metrics.dead_lettered += 1
                logger.error(
                    "job exhausted %d attempts: %s",
                    lease.attempt,
                    exc,
                    extra={**context, "outcome": "dead_letter"},
                )
            else:
                delay = backoff_delay(self.backoff_seconds, lease.attempt)
                await self.queue.retry(lease, delay, str(exc))
                self.metrics.retried += 1
                logger.info(
                    "job retry scheduled in %.1fs",
                    delay,
                    extra={**context, "outcome": "retry", "reason": str(exc)},
                )
            return None
        except Exception as exc:
            self.metrics.total_processing_ms += (time.perf_counter() - started) * 1000
            await self.queue.dead_letter(lease, f"{type(exc).__name__}: {exc}")
            self.metrics.failed += 1
            self.metrics.dead_lettered += 1
            logger.exception(
                "unexpected pipeline error", extra={**context, "outcome": "dead_letter"}
            )
            return None

        await self.queue.ack(lease)
        self.metrics.total_processing_ms += (time.perf_counter() - started) * 1000
        if outcome.status is OutcomeStatus.FAILED:
            self.metrics.failed += 1
        else:
            self.metrics.processed += 1
        self._observe_sla(lease, context)
        return outcome

    def _observe_sla(self, lease: Lease, context: dict[str, Any]) -> None:
        elapsed_ms = (time.time() - lease.job.enqueued_at) * 1000
        target = sla_target_ms(lease.job.priority)
        if elapsed_ms > target:
            self.metrics.sla_breaches += 1
            logger.warning(
                "SLA target missed",
                extra={**context, "duration_ms": round(elapsed_ms, 1), "sla_ms": target},
            )

    def stats(self) -> dict[str, Any]:
        data = self.metrics.as_dict()
        data.update({"concurrency": self.concurrency, "running": self.running})
        return data
