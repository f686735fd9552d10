"""Outbound delivery through the messaging gateway."""

from __future__ import annotations

from .base import ConnectionState, DeliveryGateway, SendResult
from .evolution import EvolutionGateway
from .memory import InMemoryGateway, SentMessage

__all__ = [
    "ConnectionState",
    "DeliveryGateway",
    "EvolutionGateway",
    "InMemoryGateway",
    "SendResult",
    "SentMessage",
]
