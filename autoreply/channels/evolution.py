"""Adapter for Evolution-style WhatsApp gateway webhooks."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from ..ingest.models import InboundEvent
from .base import ChannelAdapter, hmac_sha256_matches, sent_at_from_epoch

MESSAGE_EVENTS = {"messages.upsert", "messages_upsert", "MESSAGES_UPSERT"}

_PERSONAL_SUFFIX = "@s.whatsapp.net"
_OPAQUE_SUFFIX = "@lid"


def _jid_candidates(key: Mapping[str, Any], data: Mapping[str, Any]) -> list[str]:
    candidates = [
        key.get("remoteJid"),
        key.get("remoteJidAlt"),
        key.get("participant"),
        key.get("participantAlt"),
        data.get("sender"),
    ]
    return [str(c) for c in candidates if c]


def select_customer_jid(key: Mapping[str, Any], data: Mapping[str, Any]) -> str:
    """Pick the JID most likely to be the customer's phone number.

    Personal ``@s.whatsapp.net`` JIDs win; opaque ``@lid`` identifiers are
    only used when nothing else is available.
    """

    candidates = _jid_candidates(key, data)
    for jid in candidates:
        if jid.endswith(_PERSONAL_SUFFIX):
            return jid
    for jid in candidates:
        if not jid.endswith(_OPAQUE_SUFFIX):
            return jid
    return candidates[0] if candidates else ""


def extract_text(message: Mapping[str, Any] | None) -> tuple[str, str]:
    """Return ``(message_type, text)`` for a gateway message body."""

    if not message:
        return "unknown", ""
    if message.get("conversation"):
        return "text", str(message["conversation"])
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return "text", str(extended["text"])
    for media_type in ("imageMessage", "videoMessage", "audioMessage", "documentMessage"):
        if media_type in message:
            return media_type.removesuffix("Message"), ""
    return "unknown", ""


class EvolutionAdapter(ChannelAdapter):
    channel_name = "evolution"
    signature_header = "x-evolution-signature"

    def verify_signature(
        self,
        body: bytes,
        headers: Mapping[str, str],
        config: Mapping[str, Any],
    ) -> bool:
        secret = (config or {}).get("webhook_secret")
        if not secret:
            return True
        return hmac_sha256_matches(secret, body, headers.get(self.signature_header) or "")

    def parse_incoming(
        self,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
    ) -> Iterable[InboundEvent]:
        event_name = str(payload.get("event") or "")
        if event_name not in MESSAGE_EVENTS:
            return
        instance = str(payload.get("instance") or self.instance)
        data = payload.get("data")
        if isinstance(data, Mapping) and isinstance(data.get("messages"), list):
            items = data["messages"]
        elif isinstance(data, list):
            items = data
        elif isinstance(data, Mapping):
            items = [data]
        else:
            items = []
        for item in items:
            if not isinstance(item, Mapping):
                continue
            key = item.get("key") or {}
            message_id = key.get("id")
            if not message_id:
                continue
            message_type, text = extract_text(item.get("message"))
            jid = select_customer_jid(key, item)
            yield InboundEvent(
                channel=self.channel_name,
                instance=instance,
                channel_message_id=str(message_id),
                customer_address=jid.split("@", 1)[0],
                text=text,
                from_me=bool(key.get("fromMe")),
                customer_name=item.get("pushName"),
                message_type=message_type,
                sent_at=sent_at_from_epoch(item.get("messageTimestamp")),
                metadata={"jid": jid, "event": event_name},
            )
