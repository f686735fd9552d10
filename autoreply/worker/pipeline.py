"""Per-job reply pipeline.

``WorkerPipeline.process`` takes one queued job from "inbound message
persisted" to "reply delivered" or to an explicit early exit:

1. idempotency re-check (inbound exists, no live reply yet)
2. concurrent context load (tenant, agent settings, conversation, channel
   state, quota)
3. gate checks (closed conversation, channel, quota, tenant, agent, human
   assignment), then lead capture in the background
4. retrieval; no context stops here and the provider is never called
5. prompt assembly
6. generation with a bounded tool loop
7. confidence and governance
8. claimed, tracked delivery
9. best-effort side effects

Skips never raise. Transient errors surface as :class:`RetryableJobError`
for the worker pool; permanent errors escalate and end the job.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from ..app_logging import mask_address
from ..conversations.models import DeliveryStatus, Message
from ..conversations.repository import ConversationRepository
from ..delivery.base import DeliveryGateway
from ..errors import (
    ConversationNotFoundError,
    ErrorKind,
    RetryableJobError,
    TenantNotFoundError,
    classify_error,
)
from ..generation.base import ChatMessage
from ..generation.factory import ProviderFactory
from ..generation.prompts import PromptBuilder
from ..generation.responses import ResponseParameterStore
from ..generation.tools import ToolContext, ToolRegistry
from ..governance import ResponseValidator, score_confidence, strip_confidence_annotation
from ..inventory.repository import InventoryRepository
from ..leads import LeadRepository, detect_intent
from ..locks.store import LockStore
from ..queue.jobs import Job, sla_target_ms
from ..resilience.breaker import BreakerSet
from ..retrieval.base import Retriever, format_context
from ..side_effects import SideEffectRunner
from ..tenants.models import AgentSettings, TenantRecord
from ..tenants.repository import TenantRepository
from . import messages as notices

logger = logging.getLogger(__name__)


def reply_claim_key(inbound_message_id: uuid.UUID) -> str:
    return f"reply:{inbound_message_id}"


class OutcomeStatus(str, enum.Enum):
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    ESCALATED = "escalated"
    FAILED = "failed"


@dataclass
class PipelineOutcome:
    status: OutcomeStatus
    execution_id: str
    reason: Optional[str] = None
    message_id: Optional[uuid.UUID] = None
    confidence: Optional[float] = None
    timings: dict[str, float] = field(default_factory=dict)


@dataclass
class _Run:
    """Mutable state of one pipeline execution."""

    job: Job
    attempt: int
    execution_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    started: float = field(default_factory=time.perf_counter)
    timings: dict[str, float] = field(default_factory=dict)
    tenant: Optional[TenantRecord] = None
    settings: Optional[AgentSettings] = None

    def mark(self, stage: str, since: float) -> None:
        self.timings[stage] = round((time.perf_counter() - since) * 1000, 2)

    def log_context(self, **extra: Any) -> dict[str, Any]:
        context = {
            "tenant_id": self.job.tenant_id,
            "conversation_id": self.job.conversation_id,
            "execution_id": self.execution_id,
            "job_id": self.job.job_id,
            "priority": self.job.priority.name,
            "attempt": self.attempt,
        }
        context.update(extra)
        return context


class WorkerPipeline:
    def __init__(
        self,
        *,
        tenants: TenantRepository,
        conversations: ConversationRepository,
        inventory: InventoryRepository,
        retriever: Retriever,
        providers: ProviderFactory,
        gateway: DeliveryGateway,
        breakers: BreakerSet,
        locks: LockStore,
        side_effects: SideEffectRunner,
        leads: LeadRepository | None = None,
        tools: ToolRegistry | None = None,
        prompts: PromptBuilder | None = None,
        validator: ResponseValidator | None = None,
        response_params: ResponseParameterStore | None = None,
        tool_max_iterations: int = 5,
        history_limit: int = 10,
        confidence_threshold: float = 0.5,
        escalation_mode: str = "transition",
        reply_grace_seconds: float = 120,
        auto_end_threshold: int = 0,
    ) -> None:
        self._tenants = tenants
        self._conversations = conversations
        self._inventory = inventory
        self._retriever = retriever
        self._providers = providers
        self._gateway = gateway
        self.breakers = breakers
        self._locks = locks
        self._side_effects = side_effects
        self._leads = leads
        self._tools = tools or ToolRegistry()
        self._prompts = prompts or PromptBuilder()
        self._validator = validator or ResponseValidator()
        self._response_params = response_params or ResponseParameterStore()
        self.tool_max_iterations = max(1, tool_max_iterations)
        self.history_limit = history_limit
        self.confidence_threshold = confidence_threshold
        self.escalation_mode = escalation_mode
        self.reply_grace_seconds = reply_grace_seconds
        self.auto_end_threshold = auto_end_threshold

    # Entry point -----------------------------------------------------------------
    async def process(self, job: Job, attempt: int = 1) -> PipelineOutcome:
        run = _Run(job=job, attempt=attempt)
        try:
            return await self._run(run)
        except Exception as exc:
            return await self._handle_error(run, exc)

    async def _run(self, run: _Run) -> PipelineOutcome:
        job = run.job

        # 1. idempotency re-check
        stage = time.perf_counter()
        inbound = await asyncio.to_thread(
            self._conversations.get_message, job.tenant_id, job.inbound_message_id
        )
        if inbound is None:
            return self._finish(run, OutcomeStatus.SKIPPED, "inbound_not_found")
        if await asyncio.to_thread(
            self._conversations.has_live_reply, job.tenant_id, inbound.id
        ):
            return self._finish(run, OutcomeStatus.SKIPPED, "already_replied")
        run.mark("idempotency", stage)

        # 2. context load
        stage = time.perf_counter()
        tenant, settings, conversation, connection, quota = await asyncio.gather(
            asyncio.to_thread(self._tenants.get_tenant, job.tenant_id),
            asyncio.to_thread(self._tenants.get_agent_settings, job.tenant_id),
            asyncio.to_thread(
                self._conversations.get_conversation, job.tenant_id, job.conversation_id
            ),
            self.breakers.delivery.execute(
                lambda: self._gateway.get_connection_state(job.channel_instance)
            ),
            asyncio.to_thread(self._tenants.check_quota, job.tenant_id),
        )
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {job.tenant_id} not found")
        if conversation is None:
            raise ConversationNotFoundError(f"Conversation {job.conversation_id} not found")
        run.tenant, run.settings = tenant, settings
        run.mark("context", stage)

        # 3. gates
        if not conversation.is_open:
            return self._finish(run, OutcomeStatus.SKIPPED, "conversation_closed")
        if not connection.is_connected:
            await self._escalate(run, "channel_disconnected")
            return self._finish(run, OutcomeStatus.ESCALATED, "channel_disconnected")
        if not quota.allowed:
            await self._send_notice(run, "quota", notices.QUOTA_NOTICE)
            await self._escalate(run, f"quota_exceeded:{quota.reason}")
            return self._finish(run, OutcomeStatus.ESCALATED, "quota_exceeded")
        if not tenant.is_active:
            await self._escalate(run, "tenant_inactive")
            return self._finish(run, OutcomeStatus.ESCALATED, "tenant_inactive")
        if not settings.accepts_automation:
            reason = "maintenance" if settings.maintenance_mode else "agent_disabled"
            await self._send_notice(
                run, "maintenance", settings.maintenance_message or notices.MAINTENANCE_NOTICE
            )
            await self._escalate(run, reason)
            return self._finish(run, OutcomeStatus.ESCALATED, reason)

        if conversation.assigned_to_human:
            return self._finish(run, OutcomeStatus.SKIPPED, "assigned_to_human")
        intent = detect_intent(job.text)
        if intent and self._leads is not None:
            self._side_effects.submit(
                self._capture_lead(run, intent, conversation.customer_name),
                name="lead_capture",
                context=run.log_context(),
            )
        history = await asyncio.to_thread(
            self._conversations.recent_messages,
            job.tenant_id,
            job.conversation_id,
            self.history_limit + 1,
        )
        history = [m for m in history if m.id != inbound.id][-self.history_limit:]

        # 4. retrieval
        stage = time.perf_counter()
        retrieval = await self.breakers.retrieval.execute(
            lambda: self._retriever.retrieve(job.tenant_id, job.text)
        )
        run.mark("retrieval", stage)
        if retrieval.is_empty:
            await self._send_notice(run, "no_information", notices.NO_INFORMATION_NOTICE)
            await self._escalate(run, "no_context")
            return self._finish(run, OutcomeStatus.ESCALATED, "no_context")

        # 5. prompt
        chat = self._prompts.build(
            tenant, settings, format_context(retrieval), history, job.text
        )

        # 6. generation with tools
        stage = time.perf_counter()
        content, tool_ctx, tools_found = await self._generate(run, tenant, settings, chat)
        run.mark("generation", stage)
        text = strip_confidence_annotation(content or "")

        # 7. confidence and governance
        confidence = score_confidence(text, retrieval, tool_results_found=tools_found)
        threshold = (
            settings.confidence_threshold
            if settings.confidence_threshold is not None
            else self.confidence_threshold
        )
        validation = self._validator.validate(text, settings)
        if confidence < threshold or not validation.valid:
            reason = "low_confidence" if confidence < threshold else "governance_failed"
            await asyncio.to_thread(
                self._conversations.add_outbound_message,
                job.tenant_id,
                job.conversation_id,
                text,
                reply_to_id=inbound.id,
                delivery_status=None,
                confidence=confidence,
                metadata={
                    "kind": "draft",
                    "reason": reason,
                    "violations": list(validation.violations),
                    "execution_id": run.execution_id,
                },
            )
            await self._escalate(run, reason)
            await self._send_notice(run, "holding", notices.HOLDING_NOTICE)
            return self._finish(
                run, OutcomeStatus.ESCALATED, reason, confidence=confidence
            )

        # 8. delivery
        stage = time.perf_counter()
        delivered = await self._deliver(run, inbound, text, confidence, tool_ctx.calls)
        run.mark("delivery", stage)
        if delivered is None:
            return self._finish(run, OutcomeStatus.SKIPPED, "reply_in_progress")

        # 9. side effects
        self._schedule_side_effects(run, settings)
        if tool_ctx.escalated:
            logger.info(
                "conversation handed to a human by tool call: %s",
                tool_ctx.escalated,
                extra=run.log_context(reason="tool_escalation"),
            )
        return self._finish(
            run,
            OutcomeStatus.DELIVERED,
            message_id=delivered.id,
            confidence=confidence,
        )

    # Generation ------------------------------------------------------------------
    async def _generate(
        self,
        run: _Run,
        tenant: TenantRecord,
        settings: AgentSettings,
        chat: list[ChatMessage],
    ) -> tuple[Optional[str], ToolContext, bool]:
        provider = self._providers(tenant)
        params = self._response_params.for_agent(provider.name, settings.response_length)
        schemas: list[dict[str, Any]] = []
        if provider.supports_tools() and settings.allowed_tools != ():
            schemas = self._tools.schemas(settings.allowed_tools)
        tool_ctx = ToolContext(
            tenant_id=run.job.tenant_id,
            conversation_id=run.job.conversation_id,
            inventory=self._inventory,
            conversations=self._conversations,
        )

        content: Optional[str] = None
        found = False
        for iteration in range(1, self.tool_max_iterations + 1):
            result = await self.breakers.generation.execute(
                lambda: provider.chat(
                    chat,
                    tools=schemas or None,
                    temperature=params["temperature"],
                    max_tokens=params["max_tokens"],
                )
            )
            if result.content:
                content = result.content
            if not result.tool_calls or not schemas:
                break
            if iteration == self.tool_max_iterations:
                logger.warning(
                    "tool loop stopped after %d generation calls",
                    iteration,
                    extra=run.log_context(reason="tool_iteration_limit"),
                )
                break
            chat.append(ChatMessage.assistant(result.content, result.tool_calls))
            for call in result.tool_calls:
                outcome = await self._tools.dispatch(call, tool_ctx)
                found = found or outcome.found
                chat.append(ChatMessage.tool(call, outcome.payload))
        return content, tool_ctx, found

    # Delivery ----------------------------------------------------------------------
    async def _deliver(
        self,
        run: _Run,
        inbound: Message,
        text: str,
        confidence: float,
        tool_calls: list[str],
    ) -> Optional[Message]:
        job = run.job
        claim = reply_claim_key(inbound.id)
        if not await self._locks.set_if_absent(
            claim, run.execution_id, self.reply_grace_seconds
        ):
            return None
        try:
            outbound = await asyncio.to_thread(
                self._conversations.add_outbound_message,
                job.tenant_id,
                job.conversation_id,
                text,
                reply_to_id=inbound.id,
                confidence=confidence,
                metadata={
                    "kind": "reply",
                    "execution_id": run.execution_id,
                    "tools": tool_calls,
                },
            )
            await asyncio.to_thread(
                self._conversations.update_delivery_status,
                job.tenant_id,
                outbound.id,
                DeliveryStatus.SENDING,
            )
        except Exception:
            await self._locks.delete(claim)
            raise

        try:
            sent = await self.breakers.delivery.execute(
                lambda: self._gateway.send(job.channel_instance, job.customer_address, text)
            )
        except Exception:
            try:
                await asyncio.to_thread(
                    self._conversations.update_delivery_status,
                    job.tenant_id,
                    outbound.id,
                    DeliveryStatus.FAILED,
                )
            except Exception:
                logger.exception(
                    "could not mark reply %s failed", outbound.id, extra=run.log_context()
                )
            await self._locks.delete(claim)
            raise

        try:
            return await asyncio.to_thread(
                self._conversations.update_delivery_status,
                job.tenant_id,
                outbound.id,
                DeliveryStatus.SENT,
                channel_message_id=sent.message_id,
            )
        except Exception:
            # the customer already has the reply; never send it again
            logger.exception(
                "reply %s sent but bookkeeping failed", outbound.id, extra=run.log_context()
            )
            return outbound

    async def _send_notice(self, run: _Run, kind: str, text: str) -> None:
        """Send a canned notice; failures are logged and never raised."""

        job = run.job
        try:
            notice = await asyncio.to_thread(
                self._conversations.add_outbound_message,
                job.tenant_id,
                job.conversation_id,
                text,
                metadata={"kind": "notice", "notice": kind, "execution_id": run.execution_id},
            )
            await asyncio.to_thread(
                self._conversations.update_delivery_status,
                job.tenant_id,
                notice.id,
                DeliveryStatus.SENDING,
            )
        except Exception:
            logger.exception("could not record %s notice", kind, extra=run.log_context())
            return
        try:
            sent = await self.breakers.delivery.execute(
                lambda: self._gateway.send(job.channel_instance, job.customer_address, text)
            )
        except Exception as exc:
            logger.warning(
                "%s notice to %s not delivered: %s",
                kind,
                mask_address(job.customer_address),
                exc,
                extra=run.log_context(reason=kind),
            )
            status, channel_id = DeliveryStatus.FAILED, None
        else:
            status, channel_id = DeliveryStatus.SENT, sent.message_id
        try:
            await asyncio.to_thread(
                self._conversations.update_delivery_status,
                job.tenant_id,
                notice.id,
                status,
                channel_message_id=channel_id,
            )
        except Exception:
            logger.exception("could not update %s notice", kind, extra=run.log_context())

    # Escalation and side effects --------------------------------------------------
    async def _escalate(self, run: _Run, reason: str) -> None:
        if self.escalation_mode == "transition":
            changed = await asyncio.to_thread(
                self._conversations.escalate,
                run.job.tenant_id,
                run.job.conversation_id,
                reason,
            )
            if not changed:
                logger.info(
                    "conversation already closed, escalation %s not recorded",
                    reason,
                    extra=run.log_context(reason=reason),
                )
                return
        logger.info(
            "escalation: %s",
            reason,
            extra=run.log_context(reason=reason, state=self.escalation_mode),
        )

    def _schedule_side_effects(self, run: _Run, settings: AgentSettings) -> None:
        job = run.job
        context = run.log_context()
        self._side_effects.submit(
            asyncio.to_thread(self._increment_usage, job.tenant_id),
            name="usage_increment",
            context=context,
        )
        self._side_effects.submit(
            asyncio.to_thread(
                self._conversations.touch,
                job.tenant_id,
                job.conversation_id,
                datetime.now(timezone.utc),
            ),
            name="conversation_touch",
            context=context,
        )
        threshold = settings.auto_end_after_messages or self.auto_end_threshold
        if threshold and threshold > 0:
            self._side_effects.submit(
                self._auto_end(run, threshold), name="auto_end", context=context
            )

    async def _capture_lead(
        self, run: _Run, intent: str, customer_name: Optional[str]
    ) -> None:
        job = run.job
        lead = await asyncio.to_thread(
            self._leads.record_interaction,
            job.tenant_id,
            job.conversation_id,
            job.customer_address,
            intent,
            customer_name,
        )
        logger.info(
            "lead %s (%s, %d interactions)",
            lead.status.value,
            intent,
            lead.interaction_count,
            extra=run.log_context(reason=f"lead:{intent}"),
        )

    def _increment_usage(self, tenant_id: uuid.UUID) -> None:
        if not self._tenants.increment_usage(tenant_id):
            logger.warning(
                "usage ceiling reached, counter not incremented",
                extra={"tenant_id": tenant_id, "reason": "quota_ceiling"},
            )

    async def _auto_end(self, run: _Run, threshold: int) -> None:
        job = run.job
        count = await asyncio.to_thread(
            self._conversations.count_messages, job.tenant_id, job.conversation_id
        )
        if count < threshold:
            return
        await self._send_notice(run, "farewell", notices.FAREWELL_NOTICE)
        await asyncio.to_thread(
            self._conversations.close_conversation, job.tenant_id, job.conversation_id
        )
        logger.info(
            "conversation closed after %d messages",
            count,
            extra=run.log_context(reason="auto_end"),
        )

    # Errors and exits ---------------------------------------------------------------
    async def _handle_error(self, run: _Run, exc: Exception) -> PipelineOutcome:
        kind = classify_error(exc)
        if kind is ErrorKind.TRANSIENT:
            reason = f"transient:{type(exc).__name__}"
            if run.attempt == 1:
                await self._send_notice(run, "delay", notices.DELAY_NOTICE)
            try:
                await asyncio.to_thread(
                    self._conversations.flag,
                    run.job.tenant_id,
                    run.job.conversation_id,
                    reason,
                )
            except Exception:
                logger.exception(
                    "could not flag conversation", extra=run.log_context(reason=reason)
                )
            logger.warning(
                "transient failure, retry requested: %s",
                exc,
                extra=run.log_context(outcome="retry", reason=reason),
            )
            raise RetryableJobError(exc, run.attempt) from exc

        reason = f"error:{type(exc).__name__}"
        logger.error(
            "permanent failure: %s",
            exc,
            exc_info=exc,
            extra=run.log_context(outcome="failed", reason=reason),
        )
        try:
            await self._escalate(run, reason)
        except Exception:
            logger.exception("escalation failed", extra=run.log_context(reason=reason))
        await self._send_notice(run, "error", notices.ERROR_NOTICE)
        return self._finish(run, OutcomeStatus.FAILED, reason)

    def _finish(
        self,
        run: _Run,
        status: OutcomeStatus,
        reason: Optional[str] = None,
        *,
        message_id: Optional[uuid.UUID] = None,
        confidence: Optional[float] = None,
    ) -> PipelineOutcome:
        duration_ms = round((time.perf_counter() - run.started) * 1000, 2)
        run.timings["total"] = duration_ms
        logger.info(
            "pipeline %s%s",
            status.value,
            f" ({reason})" if reason else "",
            extra=run.log_context(
                outcome=status.value,
                reason=reason,
                confidence=confidence,
                duration_ms=duration_ms,
                sla_ms=sla_target_ms(run.job.priority),
            ),
        )
        return PipelineOutcome(
            status=status,
            execution_id=run.execution_id,
            reason=reason,
            message_id=message_id,
            confidence=confidence,
            timings=dict(run.timings),
        )
