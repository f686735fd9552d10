"""Adapter for Meta WhatsApp Cloud API webhooks.

Cloud API payloads nest messages under ``entry[].changes[].value``. Delivery
receipts arrive through the same webhook as ``value.statuses`` and yield no
events. The same customer message can also reach us through an Evolution
instance under a different id; the content claim in the deduplication gate
absorbs that.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..ingest.models import InboundEvent
from .base import ChannelAdapter, hmac_sha256_matches, sent_at_from_epoch

BUSINESS_ACCOUNT_OBJECT = "whatsapp_business_account"


def _as_list(value: Any) -> list[Any]:
    return value if isinstance(value, list) else []


def extract_text(message: Mapping[str, Any]) -> tuple[str, str]:
    """Return ``(message_type, text)`` for a Cloud API message."""

    message_type = str(message.get("type") or "unknown")
    if message_type == "text":
        return "text", str((message.get("text") or {}).get("body") or "")
    if message_type == "button":
        return "text", str((message.get("button") or {}).get("text") or "")
    if message_type == "interactive":
        interactive = message.get("interactive") or {}
        reply = interactive.get("button_reply") or interactive.get("list_reply") or {}
        return "text", str(reply.get("title") or "")
    return message_type, ""


class MetaAdapter(ChannelAdapter):
    channel_name = "meta"
    signature_header = "x-hub-signature-256"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        secret = (config or {}).get("webhook_secret")
        if not secret:
            return True
        received = headers.get(self.signature_header) or ""
        # Meta always prefixes the digest
        if not received.startswith("sha256="):
            return False
        return hmac_sha256_matches(secret, body, received)

    def verify_subscription(
        self,
        params: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> str | None:
        expected = (config or {}).get("verify_token")
        if not expected:
            return None
        if params.get("hub.mode") != "subscribe":
            return None
        if params.get("hub.verify_token") != expected:
            return None
        return params.get("hub.challenge") or ""

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Iterable[InboundEvent]:
        if payload.get("object") != BUSINESS_ACCOUNT_OBJECT:
            return
        for entry in _as_list(payload.get("entry")):
            if not isinstance(entry, Mapping):
                continue
            for change in _as_list(entry.get("changes")):
                value = change.get("value") if isinstance(change, Mapping) else None
                if isinstance(value, Mapping):
                    yield from self._parse_value(value)

    def _parse_value(self, value: Mapping[str, Any]) -> Iterable[InboundEvent]:
        phone_number_id = (value.get("metadata") or {}).get("phone_number_id")
        names = {
            str(contact.get("wa_id")): (contact.get("profile") or {}).get("name")
            for contact in _as_list(value.get("contacts"))
            if isinstance(contact, Mapping)
        }
        for message in _as_list(value.get("messages")):
            if not isinstance(message, Mapping) or not message.get("id"):
                continue
            sender = str(message.get("from") or "")
            message_type, text = extract_text(message)
            yield InboundEvent(
                channel=self.channel_name,
                instance=self.instance,
                channel_message_id=str(message["id"]),
                customer_address=sender,
                text=text,
                customer_name=names.get(sender),
                message_type=message_type,
                sent_at=sent_at_from_epoch(message.get("timestamp")),
                metadata={"phone_number_id": phone_number_id, "source": "meta_api"},
            )
