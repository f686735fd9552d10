"""Deduplication gate between the webhook boundary and the reply queue.

An inbound event is processed only after two independent atomic claims
succeed:

1. ``dedup:msg:{channel_message_id}``: the gateway message id, held for
   hours, which absorbs gateway redelivery.
2. ``dedup:content:{address}:{fingerprint}``: the customer plus the start of
   the text, held for seconds, which absorbs the same message reported by
   several transports under different ids.

Only then is the tenant resolved, the inbound message persisted and a job
enqueued. Every discard carries an explicit reason and is silent to the
sender.
"""

from __future__ import annotations

import asyncio
import logging

from ..app_logging import mask_address
from ..conversations.repository import ConversationRepository
from ..delivery.base import DeliveryGateway
from ..locks.store import LockStore
from ..queue import Job, JobQueue, PrioritySignals, determine_priority
from ..side_effects import SideEffectRunner
from ..tenants.repository import TenantRepository
from .models import DiscardReason, InboundEvent, IngestResult
from .sanitize import content_fingerprint, sanitize_address, sanitize_text

logger = logging.getLogger(__name__)


def message_claim_key(channel_message_id: str) -> str:
    return f"dedup:msg:{channel_message_id}"


def content_claim_key(address: str, text: str, prefix_length: int) -> str:
    return f"dedup:content:{address}:{content_fingerprint(text, prefix_length)}"


class DeduplicationGate:
    def __init__(
        self,
        *,
        locks: LockStore,
        tenants: TenantRepository,
        conversations: ConversationRepository,
        queue: JobQueue,
        gateway: DeliveryGateway | None = None,
        side_effects: SideEffectRunner | None = None,
        message_ttl: float = 6 * 60 * 60,
        content_ttl: float = 3,
        content_prefix: int = 100,
    ) -> None:
        self._locks = locks
        self._tenants = tenants
        self._conversations = conversations
        self._queue = queue
        self._gateway = gateway
        self._side_effects = side_effects
        self.message_ttl = message_ttl
        self.content_ttl = content_ttl
        self.content_prefix = content_prefix

    def _discard(
        self, event: InboundEvent, reason: DiscardReason, detail: str | None = None
    ) -> IngestResult:
        logger.info(
            "discarded inbound %s from %s: %s",
            event.channel_message_id,
            mask_address(event.customer_address),
            detail or reason.value,
            extra={"outcome": "discarded", "reason": reason.value},
        )
        return IngestResult.discarded(reason, detail)

    def _validate(self, event: InboundEvent) -> tuple[str, str] | str:
        """Return ``(address, text)`` or a rejection detail."""

        if event.from_me:
            return "sent by the business"
        if not event.channel_message_id:
            return "missing message id"
        text = sanitize_text(event.text)
        if not text:
            return f"no text content ({event.message_type})"
        address = sanitize_address(event.customer_address)
        if address is None:
            return "invalid customer address"
        return address, text

    async def ingest(self, event: InboundEvent) -> IngestResult:
        validated = self._validate(event)
        if isinstance(validated, str):
            return self._discard(event, DiscardReason.INVALID, validated)
        address, text = validated

        message_key = message_claim_key(event.channel_message_id)
        if not await self._locks.set_if_absent(message_key, "1", self.message_ttl):
            return self._discard(event, DiscardReason.EXACT_DUPLICATE)

        try:
            content_key = content_claim_key(address, text, self.content_prefix)
            content_claimed = await self._locks.set_if_absent(
                content_key, event.channel_message_id, self.content_ttl
            )
        except Exception:
            await self._locks.delete(message_key)
            raise
        if not content_claimed:
            return self._discard(event, DiscardReason.NEAR_DUPLICATE)

        try:
            return await self._route(event, address, text)
        except Exception:
            # release both claims so a gateway retry can succeed
            await self._locks.delete(message_key)
            await self._locks.delete(content_key)
            raise

    async def _route(self, event: InboundEvent, address: str, text: str) -> IngestResult:
        tenant = await asyncio.to_thread(
            self._tenants.resolve_tenant_by_instance, event.instance
        )
        if tenant is None:
            return self._discard(
                event, DiscardReason.UNROUTED, f"no tenant for instance {event.instance}"
            )

        conversation, created = await asyncio.to_thread(
            self._conversations.get_or_create_open_conversation,
            tenant.id,
            address,
            event.customer_name,
        )
        history_length = (
            0
            if created
            else await asyncio.to_thread(
                self._conversations.count_messages, tenant.id, conversation.id
            )
        )
        inbound = await asyncio.to_thread(
            self._conversations.add_inbound_message,
            tenant.id,
            conversation.id,
            text,
            event.channel_message_id,
            {"instance": event.instance, "channel": event.channel, **event.metadata},
        )
        if inbound is None:
            return self._discard(event, DiscardReason.ALREADY_PERSISTED)

        priority = determine_priority(
            PrioritySignals(
                text=text,
                is_first_message=history_length == 0,
                conversation_length=history_length,
            )
        )
        job = Job(
            tenant_id=tenant.id,
            conversation_id=conversation.id,
            inbound_message_id=inbound.id,
            customer_address=address,
            text=text,
            channel_instance=event.instance,
            channel_message_id=event.channel_message_id,
            priority=priority,
        )
        if not await self._queue.enqueue(job):
            return self._discard(event, DiscardReason.ALREADY_QUEUED)

        if self._gateway is not None and self._side_effects is not None:
            self._side_effects.submit(
                self._gateway.set_typing_indicator(event.instance, address, True),
                name="typing_indicator",
                context={"tenant_id": tenant.id, "conversation_id": conversation.id},
            )

        logger.info(
            "queued inbound %s",
            event.channel_message_id,
            extra={
                "tenant_id": tenant.id,
                "conversation_id": conversation.id,
                "job_id": job.job_id,
                "priority": priority.name,
                "outcome": "processed",
            },
        )
        return IngestResult.processed(job.job_id, int(priority))
