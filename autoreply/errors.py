"""Error hierarchy and transient/permanent classification.

Failures are classified where they are caught. Transient failures (timeouts,
connection resets, rate limiting, upstream 5xx, an open circuit) re-queue the
job; permanent failures (validation, malformed data, other 4xx, programming
errors) terminate it. Anything unrecognised is treated as permanent, since a
retry could produce a second customer-facing message.
"""

from __future__ import annotations

import asyncio
import enum
from typing import Any

import openai
import psycopg
import requests
from pydantic import ValidationError
from redis import exceptions as redis_exceptions


class PipelineError(RuntimeError):
    """Base class for errors raised by the ingestion and worker pipeline."""


class TransientError(PipelineError):
    """A failure that is expected to succeed when retried later."""


class PermanentError(PipelineError):
    """A failure that will reproduce on retry."""


class TenantNotFoundError(PermanentError):
    """Raised when a job references a tenant that no longer exists."""


class ConversationNotFoundError(PermanentError):
    """Raised when a job references an unknown conversation."""


class InvalidTransitionError(PermanentError):
    """Raised for a delivery-status change outside pending→sending→sent|failed."""


class GatewayError(PipelineError):
    """HTTP-level failure reported by the delivery gateway."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RetryableJobError(TransientError):
    """Raised by the pipeline to ask the worker pool for a retry."""

    def __init__(self, cause: BaseException, attempt: int) -> None:
        super().__init__(f"{type(cause).__name__}: {cause}")
        self.cause = cause
        self.attempt = attempt


class ErrorKind(str, enum.Enum):
    TRANSIENT = "transient"
    PERMANENT = "permanent"


_TRANSIENT_TYPES: tuple[type[BaseException], ...] = (
    TransientError,
    TimeoutError,
    asyncio.TimeoutError,
    openai.APIConnectionError,
    ConnectionError,
    requests.Timeout,
    requests.ConnectionError,
    psycopg.OperationalError,
    redis_exceptions.ConnectionError,
    redis_exceptions.TimeoutError,
)

_PERMANENT_TYPES: tuple[type[BaseException], ...] = (
    PermanentError,
    ValidationError,
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
    psycopg.IntegrityError,
    psycopg.DataError,
)

_TRANSIENT_MARKERS = (
    "timeout",
    "timed out",
    "overloaded",
    "econnrefused",
    "econnreset",
    "etimedout",
    "enotfound",
    "connection reset",
)


def _status_code_of(exc: BaseException) -> int | None:
    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        return status
    response: Any = getattr(exc, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Return whether ``exc`` should be retried."""

    if isinstance(exc, _TRANSIENT_TYPES):
        return ErrorKind.TRANSIENT
    status = _status_code_of(exc)
    if status is not None:
        if status == 429 or status >= 500:
            return ErrorKind.TRANSIENT
        if 400 <= status < 500:
            return ErrorKind.PERMANENT
    if isinstance(exc, _PERMANENT_TYPES):
        return ErrorKind.PERMANENT
    message = str(exc).lower()
    if any(marker in message for marker in _TRANSIENT_MARKERS):
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT


def is_transient(exc: BaseException) -> bool:
    return classify_error(exc) is ErrorKind.TRANSIENT
