"""Domain models for conversations and their messages."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any
from uuid import UUID, uuid4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConversationStatus(str, enum.Enum):
    ACTIVE = "active"
    ESCALATED = "escalated"
    CLOSED = "closed"


class Assignment(str, enum.Enum):
    AUTOMATED = "automated"
    HUMAN = "human"


class Direction(str, enum.Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class Sender(str, enum.Enum):
    CUSTOMER = "customer"
    AUTOMATED = "automated"
    HUMAN = "human"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"


#: Allowed outbound delivery-status moves (target -> permitted sources).
DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.SENDING: frozenset({DeliveryStatus.PENDING}),
    DeliveryStatus.SENT: frozenset({DeliveryStatus.SENDING}),
    DeliveryStatus.FAILED: frozenset({DeliveryStatus.PENDING, DeliveryStatus.SENDING}),
}

#: Statuses that count as an existing reply for idempotency checks.
LIVE_REPLY_STATUSES = frozenset(
    {DeliveryStatus.PENDING, DeliveryStatus.SENDING, DeliveryStatus.SENT}
)


@dataclass
class Conversation:
    tenant_id: UUID
    customer_address: str
    id: UUID = field(default_factory=uuid4)
    customer_name: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    assignment: Assignment = Assignment.AUTOMATED
    escalation_reason: str | None = None
    last_message_at: datetime | None = None
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def is_open(self) -> bool:
        return self.status is not ConversationStatus.CLOSED

    @property
    def assigned_to_human(self) -> bool:
        return self.assignment is Assignment.HUMAN


@dataclass
class Message:
    tenant_id: UUID
    conversation_id: UUID
    direction: Direction
    sender: Sender
    text: str
    id: UUID = field(default_factory=uuid4)
    delivery_status: DeliveryStatus | None = None
    channel_message_id: str | None = None
    reply_to_id: UUID | None = None
    confidence: float | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=_utcnow)

    @property
    def role(self) -> str:
        """Chat role used when replaying history to the generation provider."""

        return "user" if self.direction is Direction.INBOUND else "assistant"
