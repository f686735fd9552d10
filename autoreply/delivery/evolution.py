"""HTTP client for the Evolution WhatsApp gateway API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import requests

from ..app_logging import mask_address
from ..errors import GatewayError
from .base import ConnectionState, SendResult

logger = logging.getLogger(__name__)


class EvolutionGateway:
    """:class:`~autoreply.delivery.DeliveryGateway` backed by the Evolution REST API.

    Requests run through a shared :class:`requests.Session` on a worker
    thread. Timeouts are left to the delivery circuit breaker; ``timeout``
    here only bounds the socket.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None,
        *,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()
        if api_key:
            self._session.headers["apikey"] = api_key

    def _request(self, method: str, path: str, payload: dict[str, Any] | None = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        resp = self._session.request(method, url, json=payload, timeout=self.timeout)
        if resp.status_code >= 400:
            raise GatewayError(
                f"{method} {path} failed with {resp.status_code}: {resp.text[:200]}",
                status_code=resp.status_code,
            )
        if not resp.content:
            return {}
        try:
            return resp.json()
        except ValueError:
            return {}

    async def send(self, instance: str, recipient: str, text: str) -> SendResult:
        data = await asyncio.to_thread(
            self._request,
            "POST",
            f"/message/sendText/{instance}",
            {"number": recipient, "text": text},
        )
        message_id = (data.get("key") or {}).get("id")
        logger.debug("sent message to %s via %s", mask_address(recipient), instance)
        return SendResult(message_id=message_id)

    async def get_connection_state(self, instance: str) -> ConnectionState:
        data = await asyncio.to_thread(
            self._request, "GET", f"/instance/connectionState/{instance}"
        )
        state = (data.get("instance") or {}).get("state") or data.get("state") or "unknown"
        return ConnectionState(state=str(state))

    async def set_typing_indicator(
        self, instance: str, recipient: str, typing: bool = True
    ) -> None:
        await asyncio.to_thread(
            self._request,
            "POST",
            f"/chat/sendPresence/{instance}",
            {
                "number": recipient,
                "presence": "composing" if typing else "paused",
                "delay": 1200,
            },
        )

    def close(self) -> None:
        self._session.close()
