"""Base abstractions for messaging-gateway channel adapters."""

from __future__ import annotations

import hashlib
import hmac
from abc import ABC, abstractmethod
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from typing import Any

from ..ingest.models import InboundEvent


class ChannelAdapter(ABC):
    """Abstract base class encapsulating gateway-specific payload handling."""

    #: Lowercase channel identifier used in routes and configuration.
    channel_name: str

    #: Header carrying the payload signature, if the gateway signs payloads.
    signature_header: str | None = None

    def __init__(self, *, instance: str) -> None:
        self.instance = instance

    @abstractmethod
    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Iterable[InboundEvent]:
        """Convert a webhook payload into inbound events.

        Payloads describing anything other than new messages yield nothing.
        """

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        """Validate authenticity of the webhook payload.

        Adapters can override this to implement signature checks. The default
        implementation returns ``True``.
        """

        return True

    def verify_subscription(
        self,
        params: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> str | None:
        """Answer a gateway subscription handshake.

        Returns the challenge to echo back, or ``None`` when the handshake is
        rejected or the gateway does not use one.
        """

        return None


def hmac_sha256_matches(secret: str, body: bytes, received: str) -> bool:
    """Compare a hex HMAC-SHA256 of ``body`` (optionally ``sha256=``-prefixed)."""

    if not received:
        return False
    received = received.removeprefix("sha256=")
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(received, expected)


def sent_at_from_epoch(value: Any) -> datetime:
    if value:
        try:
            return datetime.fromtimestamp(int(value), tz=timezone.utc)
        except (ValueError, TypeError, OverflowError):
            pass
    return datetime.now(timezone.utc)
