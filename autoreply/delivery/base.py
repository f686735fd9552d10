"""Delivery gateway interface."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol


@dataclass(frozen=True)
class SendResult:
    message_id: str | None


@dataclass(frozen=True)
class ConnectionState:
    state: str

    @property
    def is_connected(self) -> bool:
        return self.state == "open"


class DeliveryGateway(Protocol):
    """Outbound side of the messaging gateway."""

    async def send(self, instance: str, recipient: str, text: str) -> SendResult: ...

    async def get_connection_state(self, instance: str) -> ConnectionState: ...

    async def set_typing_indicator(
        self, instance: str, recipient: str, typing: bool = True
    ) -> None: ...
