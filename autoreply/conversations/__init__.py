"""Conversation and message persistence."""

from __future__ import annotations

from .models import (
    Assignment,
    Conversation,
    ConversationStatus,
    DeliveryStatus,
    Direction,
    Message,
    Sender,
)
from .repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)

__all__ = [
    "Assignment",
    "Conversation",
    "ConversationRepository",
    "ConversationStatus",
    "DeliveryStatus",
    "Direction",
    "InMemoryConversationRepository",
    "Message",
    "PostgresConversationRepository",
    "Sender",
]
