"""Inbound event and ingestion outcome models."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any


@dataclass
class InboundEvent:
    """Uniform representation of one inbound gateway message."""

    channel: str
    instance: str
    channel_message_id: str
    customer_address: str
    text: str
    from_me: bool = False
    customer_name: str | None = None
    message_type: str = "text"
    sent_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, Any] = field(default_factory=dict)


class IngestStatus(str, enum.Enum):
    PROCESSED = "processed"
    DISCARDED = "discarded"


class DiscardReason(str, enum.Enum):
    INVALID = "invalid"
    EXACT_DUPLICATE = "exact_duplicate"
    NEAR_DUPLICATE = "near_duplicate"
    UNROUTED = "unrouted"
    ALREADY_PERSISTED = "already_persisted"
    ALREADY_QUEUED = "already_queued"


@dataclass(frozen=True)
class IngestResult:
    status: IngestStatus
    reason: DiscardReason | None = None
    detail: str | None = None
    job_id: str | None = None
    priority: int | None = None

    @classmethod
    def processed(cls, job_id: str, priority: int) -> IngestResult:
        return cls(IngestStatus.PROCESSED, job_id=job_id, priority=priority)

    @classmethod
    def discarded(cls, reason: DiscardReason, detail: str | None = None) -> IngestResult:
        return cls(IngestStatus.DISCARDED, reason=reason, detail=detail)

    def as_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"status": self.status.value}
        if self.reason is not None:
            data["reason"] = self.reason.value
        if self.job_id is not None:
            data["job_id"] = self.job_id
        if self.priority is not None:
            data["priority"] = self.priority
        return data
