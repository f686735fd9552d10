"""Job model and priority classification for the reply queue."""

from __future__ import annotations

import enum
import re
import time
from dataclasses import dataclass, field, replace
from typing import Any
from uuid import UUID


class Priority(enum.IntEnum):
    """Priority classes; a lower value is claimed first."""

    URGENT = 1
    HIGH = 2
    NORMAL = 3
    LOW = 4


#: End-to-end processing targets per class, in milliseconds.
SLA_TARGETS_MS: dict[Priority, int] = {
    Priority.URGENT: 1500,
    Priority.HIGH: 2000,
    Priority.NORMAL: 2500,
    Priority.LOW: 5000,
}

URGENCY_KEYWORDS = (
    "urgent",
    "emergency",
    "asap",
    "immediately",
    "right now",
    "help me",
)

SHORT_MESSAGE_WORDS = 10
LONG_CONVERSATION_MESSAGES = 10

_URGENCY_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in URGENCY_KEYWORDS) + r")\b", re.IGNORECASE
)


@dataclass(frozen=True)
class PrioritySignals:
    """Caller-supplied hints used to pick a priority class."""

    text: str
    is_first_message: bool = False
    conversation_length: int = 0

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    @property
    def has_urgency_keyword(self) -> bool:
        return bool(_URGENCY_PATTERN.search(self.text))


def determine_priority(signals: PrioritySignals) -> Priority:
    if signals.is_first_message or signals.has_urgency_keyword:
        return Priority.URGENT
    if signals.word_count <= SHORT_MESSAGE_WORDS:
        return Priority.HIGH
    if signals.conversation_length > LONG_CONVERSATION_MESSAGES:
        return Priority.LOW
    return Priority.NORMAL


def sla_target_ms(priority: Priority) -> int:
    return SLA_TARGETS_MS[Priority(priority)]


@dataclass(frozen=True)
class Job:
    """Unit of work handed from the deduplication gate to the worker pool.

    ``job_id`` is the gateway message identifier, so a message can be queued
    at most once while its job is live.
    """

    tenant_id: UUID
    conversation_id: UUID
    inbound_message_id: UUID
    customer_address: str
    text: str
    channel_instance: str
    channel_message_id: str
    priority: Priority = Priority.NORMAL
    enqueued_at: float = field(default_factory=time.time)

    @property
    def job_id(self) -> str:
        return self.channel_message_id

    def to_dict(self) -> dict[str, Any]:
        return {
            "tenant_id": str(self.tenant_id),
            "conversation_id": str(self.conversation_id),
            "inbound_message_id": str(self.inbound_message_id),
            "customer_address": self.customer_address,
            "text": self.text,
            "channel_instance": self.channel_instance,
            "channel_message_id": self.channel_message_id,
            "priority": int(self.priority),
            "enqueued_at": self.enqueued_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Job:
        return cls(
            tenant_id=UUID(str(data["tenant_id"])),
            conversation_id=UUID(str(data["conversation_id"])),
            inbound_message_id=UUID(str(data["inbound_message_id"])),
            customer_address=data["customer_address"],
            text=data["text"],
            channel_instance=data["channel_instance"],
            channel_message_id=data["channel_message_id"],
            priority=Priority(int(data.get("priority", Priority.NORMAL))),
            enqueued_at=float(data.get("enqueued_at") or time.time()),
        )


@dataclass(frozen=True)
class QueuedJob:
    """A job plus its delivery bookkeeping."""

    job: Job
    attempt: int = 1
    last_error: str | None = None

    def next_attempt(self, error: str | None) -> QueuedJob:
        return replace(self, attempt=self.attempt + 1, last_error=error)

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "attempt": self.attempt,
            "last_error": self.last_error,
            "priority": int(self.job.priority),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> QueuedJob:
        return cls(
            job=Job.from_dict(data["job"]),
            attempt=int(data.get("attempt", 1)),
            last_error=data.get("last_error"),
        )


@dataclass(frozen=True)
class Lease:
    """A claimed job; it stays invisible to other workers until ``deadline``."""

    queued: QueuedJob
    token: str
    deadline: float

    @property
    def job(self) -> Job:
        return self.queued.job

    @property
    def attempt(self) -> int:
        return self.queued.attempt


@dataclass(frozen=True)
class DeadLetter:
    job: Job
    attempts: int
    error: str
    failed_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "job": self.job.to_dict(),
            "attempts": self.attempts,
            "error": self.error,
            "failed_at": self.failed_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> DeadLetter:
        return cls(
            job=Job.from_dict(data["job"]),
            attempts=int(data["attempts"]),
            error=data["error"],
            failed_at=float(data["failed_at"]),
        )


@dataclass(frozen=True)
class QueueStats:
    waiting: int
    delayed: int
    in_flight: int
    dead: int
    waiting_by_priority: dict[str, int]

    @property
    def is_healthy(self) -> bool:
        return self.waiting < 100

    def as_dict(self) -> dict[str, Any]:
        return {
            "waiting": self.waiting,
            "delayed": self.delayed,
            "in_flight": self.in_flight,
            "dead": self.dead,
            "waiting_by_priority": dict(self.waiting_by_priority),
            "is_healthy": self.is_healthy,
        }
