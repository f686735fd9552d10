"""Circuit breaker for calls to external dependencies.

Each protected dependency (generation provider, delivery gateway, retrieval
index) owns its own :class:`CircuitBreaker`. State is process local and is
never persisted.

CLOSED
    Calls pass through; consecutive failures are counted. Reaching
    ``failure_threshold`` opens the circuit.
OPEN
    Calls are rejected with :class:`CircuitBreakerOpenError` (or routed to the
    fallback) without touching the dependency. Once ``reset_timeout`` has
    elapsed the next call observes HALF_OPEN.
HALF_OPEN
    Up to ``half_open_max_calls`` trial calls run concurrently. Any failure
    reopens the circuit; ``success_threshold`` consecutive successes close it.

The OPEN → HALF_OPEN transition is evaluated lazily from the injected clock,
so no background timer is needed.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from ..config import BreakerSettings
from ..errors import TransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, enum.Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True)
class BreakerStats:
    """Point-in-time snapshot used for health reporting and error context."""

    name: str
    state: CircuitState
    failures: int
    successes: int
    total_calls: int
    total_failures: int
    total_rejections: int
    last_failure_at: float | None
    last_success_at: float | None
    opened_at: float | None

    def as_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        return data


class CircuitBreakerOpenError(TransientError):
    """Raised when a call is rejected because the circuit is open."""

    def __init__(self, stats: BreakerStats) -> None:
        super().__init__(f"circuit '{stats.name}' is {stats.state.value}")
        self.stats = stats


class CallTimeoutError(TransientError, TimeoutError):
    """Raised when a protected call exceeds the per-call timeout."""


class CircuitBreaker:
    """Three-state breaker wrapping async callables."""

    def __init__(
        self,
        name: str,
        *,
        failure_threshold: int = 5,
        success_threshold: int = 2,
        reset_timeout: float = 60.0,
        call_timeout: float | None = None,
        half_open_max_calls: int = 1,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold < 1 or success_threshold < 1:
            raise ValueError("breaker thresholds must be positive")
        self.name = name
        self.failure_threshold = failure_threshold
        self.success_threshold = success_threshold
        self.reset_timeout = reset_timeout
        self.call_timeout = call_timeout
        self.half_open_max_calls = max(1, half_open_max_calls)
        self.enabled = enabled
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_in_flight = 0
        self._opened_at: float | None = None
        self._last_failure_at: float | None = None
        self._last_success_at: float | None = None
        self._total_calls = 0
        self._total_failures = 0
        self._total_rejections = 0

    @classmethod
    def from_settings(
        cls,
        name: str,
        settings: BreakerSettings,
        *,
        enabled: bool = True,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreaker:
        return cls(
            name,
            failure_threshold=settings.failure_threshold,
            success_threshold=settings.success_threshold,
            reset_timeout=settings.reset_timeout,
            call_timeout=settings.call_timeout,
            half_open_max_calls=settings.half_open_max_calls,
            enabled=enabled,
            clock=clock,
        )

    # State -------------------------------------------------------------------
    @property
    def state(self) -> CircuitState:
        if (
            self._state is CircuitState.OPEN
            and self._opened_at is not None
            and self._clock() - self._opened_at >= self.reset_timeout
        ):
            self._transition(CircuitState.HALF_OPEN)
        return self._state

    def _transition(self, new_state: CircuitState) -> None:
        if new_state is self._state:
            return
        previous = self._state
        self._state = new_state
        if new_state is CircuitState.OPEN:
            self._opened_at = self._clock()
            self._successes = 0
        elif new_state is CircuitState.HALF_OPEN:
            self._successes = 0
            self._half_open_in_flight = 0
        else:
            self._failures = 0
            self._successes = 0
            self._opened_at = None
        log = logger.warning if new_state is CircuitState.OPEN else logger.info
        log(
            "circuit %s: %s -> %s",
            self.name,
            previous.value,
            new_state.value,
            extra={"breaker": self.name, "state": new_state.value},
        )

    def stats(self) -> BreakerStats:
        return BreakerStats(
            name=self.name,
            state=self.state,
            failures=self._failures,
            successes=self._successes,
            total_calls=self._total_calls,
            total_failures=self._total_failures,
            total_rejections=self._total_rejections,
            last_failure_at=self._last_failure_at,
            last_success_at=self._last_success_at,
            opened_at=self._opened_at,
        )

    def reset(self) -> None:
        """Force the breaker back to CLOSED and clear counters."""

        self._transition(CircuitState.CLOSED)
        self._failures = 0
        self._half_open_in_flight = 0

    # Outcome bookkeeping -----------------------------------------------------
    def _record_success(self) -> None:
        self._last_success_at = self._clock()
        self._failures = 0
        if self._state is CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.success_threshold:
                self._transition(CircuitState.CLOSED)

    def _record_failure(self, exc: BaseException) -> None:
        self._last_failure_at = self._clock()
        self._total_failures += 1
        self._failures += 1
        if self._state is CircuitState.HALF_OPEN:
            self._transition(CircuitState.OPEN)
        elif (
            self._state is CircuitState.CLOSED
            and self._failures >= self.failure_threshold
        ):
            self._transition(CircuitState.OPEN)
        logger.debug(
            "circuit %s recorded failure %d/%d: %s",
            self.name,
            self._failures,
            self.failure_threshold,
            exc,
        )

    def _admit(self) -> bool:
        state = self.state
        if state is CircuitState.CLOSED:
            return True
        if state is CircuitState.OPEN:
            return False
        if self._half_open_in_flight >= self.half_open_max_calls:
            return False
        self._half_open_in_flight += 1
        return True

    # Execution ---------------------------------------------------------------
    async def _invoke(self, operation: Callable[[], Awaitable[T]]) -> T:
        if self.call_timeout is None:
            return await operation()
        try:
            return await asyncio.wait_for(operation(), timeout=self.call_timeout)
        except asyncio.TimeoutError as exc:
            raise CallTimeoutError(
                f"{self.name} call exceeded {self.call_timeout:.1f}s"
            ) from exc

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Run ``operation`` under breaker protection.

        ``operation`` and ``fallback`` are zero-argument callables returning
        awaitables. The fallback runs when the circuit rejects the call or when
        the operation fails; without a fallback the rejection or the original
        error is raised.
        """

        if not self.enabled:
            return await self._invoke(operation)

        self._total_calls += 1
        if not self._admit():
            self._total_rejections += 1
            if fallback is not None:
                return await fallback()
            raise CircuitBreakerOpenError(self.stats())

        probing = self._state is CircuitState.HALF_OPEN
        try:
            result = await self._invoke(operation)
        except Exception as exc:
            self._record_failure(exc)
            if fallback is not None:
                logger.warning(
                    "circuit %s using fallback after error: %s",
                    self.name,
                    exc,
                    extra={"breaker": self.name},
                )
                return await fallback()
            raise
        else:
            self._record_success()
            return result
        finally:
            if probing and self._half_open_in_flight > 0:
                self._half_open_in_flight -= 1


class BreakerSet:
    """The independently configured breakers owned by one pipeline."""

    def __init__(
        self,
        generation: CircuitBreaker,
        retrieval: CircuitBreaker,
        delivery: CircuitBreaker,
    ) -> None:
        self.generation = generation
        self.retrieval = retrieval
        self.delivery = delivery

    @classmethod
    def from_settings(
        cls, settings: Any, clock: Callable[[], float] = time.monotonic
    ) -> BreakerSet:
        enabled = settings.enable_circuit_breaker
        return cls(
            generation=CircuitBreaker.from_settings(
                "generation", settings.generation_breaker, enabled=enabled, clock=clock
            ),
            retrieval=CircuitBreaker.from_settings(
                "retrieval", settings.retrieval_breaker, enabled=enabled, clock=clock
            ),
            delivery=CircuitBreaker.from_settings(
                "delivery", settings.delivery_breaker, enabled=enabled, clock=clock
            ),
        )

    def __iter__(self):
        return iter((self.generation, self.retrieval, self.delivery))

    def stats(self) -> dict[str, dict[str, Any]]:
        return {breaker.name: breaker.stats().as_dict() for breaker in self}
