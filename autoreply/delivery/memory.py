"""Recording gateway for tests and local runs."""

from __future__ import annotations

import itertools
from collections import deque
from dataclasses import dataclass

from .base import ConnectionState, SendResult


@dataclass(frozen=True)
class SentMessage:
    instance: str
    recipient: str
    text: str
    message_id: str


class InMemoryGateway:
    """Records sends; failures can be scripted per call with :meth:`fail_next`."""

    def __init__(self, state: str = "open") -> None:
        self.state = state
        self.sent: list[SentMessage] = []
        self.typing: list[tuple[str, str, bool]] = []
        self._failures: deque[BaseException] = deque()
        self._ids = itertools.count(1)

    def fail_next(self, *errors: BaseException) -> None:
        self._failures.extend(errors)

    async def send(self, instance: str, recipient: str, text: str) -> SendResult:
        if self._failures:
            raise self._failures.popleft()
        message_id = f"out-{next(self._ids)}"
        self.sent.append(SentMessage(instance, recipient, text, message_id))
        return SendResult(message_id=message_id)

    async def get_connection_state(self, instance: str) -> ConnectionState:
        return ConnectionState(state=self.state)

    async def set_typing_indicator(
        self, instance: str, recipient: str, typing: bool = True
    ) -> None:
        self.typing.append((instance, recipient, typing))

    def texts_to(self, recipient: str) -> list[str]:
        return [m.text for m in self.sent if m.recipient == recipient]
