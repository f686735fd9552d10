"""Best-effort background work kept off the latency-critical path.

Typing indicators, usage counters, conversation timestamps and the
auto-close check are allowed to fail. They are submitted here instead of
being awaited; failures are logged on the ``autoreply.side_effects`` logger
and counted, and never propagate to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Coroutine
from typing import Any

logger = logging.getLogger(__name__)


class SideEffectRunner:
    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self.failures = 0
        self.completed = 0

    def submit(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        name: str,
        context: dict[str, Any] | None = None,
    ) -> asyncio.Task[Any]:
        task = asyncio.get_running_loop().create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(lambda t: self._finished(t, name, context or {}))
        return task

    def _finished(
        self, task: asyncio.Task[Any], name: str, context: dict[str, Any]
    ) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            logger.info("side effect %s cancelled", name, extra=context)
            return
        exc = task.exception()
        if exc is None:
            self.completed += 1
            return
        self.failures += 1
        logger.warning(
            "side effect %s failed: %s",
            name,
            exc,
            exc_info=(type(exc), exc, exc.__traceback__),
            extra=context,
        )

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for submitted work to finish (used on shutdown and in tests)."""

        while self._tasks:
            pending = list(self._tasks)
            _, not_done = await asyncio.wait(pending, timeout=timeout)
            if not_done:
                for task in not_done:
                    task.cancel()
                await asyncio.gather(*not_done, return_exceptions=True)
                return
