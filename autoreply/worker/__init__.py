"""Reply workers: the per-job pipeline and the pool that runs it."""

from __future__ import annotations

from .pipeline import OutcomeStatus, PipelineOutcome, WorkerPipeline
from .pool import PoolMetrics, WorkerPool, backoff_delay

__all__ = [
    "OutcomeStatus",
    "PipelineOutcome",
    "PoolMetrics",
    "WorkerPipeline",
    "WorkerPool",
    "backoff_delay",
]
