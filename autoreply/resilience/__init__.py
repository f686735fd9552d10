"""Resilience primitives for external calls."""

from __future__ import annotations

from .breaker import (
    BreakerSet,
    BreakerStats,
    CallTimeoutError,
    CircuitBreaker,
    CircuitBreakerOpenError,
    CircuitState,
)

__all__ = [
    "BreakerSet",
    "BreakerStats",
    "CallTimeoutError",
    "CircuitBreaker",
    "CircuitBreakerOpenError",
    "CircuitState",
]
