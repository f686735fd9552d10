"""Wire every pipeline component from :class:`~autoreply.config.Settings`.

PostgreSQL and Redis are used when ``DATABASE_URL`` and ``REDIS_URL`` are
set; otherwise the in-memory implementations are used, which keeps local
runs and the test suite free of external services.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from functools import partial
from typing import Any, Optional

import psycopg

from .config import Settings
from .conversations.repository import (
    ConversationRepository,
    InMemoryConversationRepository,
    PostgresConversationRepository,
)
from .delivery.base import DeliveryGateway
from .delivery.evolution import EvolutionGateway
from .generation.factory import ProviderFactory, ProviderSelector
from .generation.tools import BUILTIN_TOOLS, ToolRegistry
from .ingest.gate import DeduplicationGate
from .inventory.repository import (
    InMemoryInventoryRepository,
    InventoryRepository,
    PostgresInventoryRepository,
)
from .leads import InMemoryLeadRepository, LeadRepository, PostgresLeadRepository
from .locks.store import InMemoryLockStore, LockStore, RedisLockStore
from .models.session import get_sessionmaker
from .queue import InMemoryJobQueue, JobQueue, RedisJobQueue
from .resilience.breaker import BreakerSet
from .retrieval.hybrid import HybridRetriever
from .retrieval.knowledge import (
    InMemoryKnowledgeIndex,
    KnowledgeIndex,
    PgVectorKnowledgeIndex,
)
from .side_effects import SideEffectRunner
from .tenants.repository import (
    InMemoryTenantRepository,
    SqlTenantRepository,
    TenantRepository,
)
from .worker.pipeline import WorkerPipeline
from .worker.pool import WorkerPool

logger = logging.getLogger(__name__)


def build_tool_registry(enabled: Optional[tuple[str, ...]]) -> ToolRegistry:
    """Registry limited to ``enabled`` (all built-in tools when ``None``)."""

    registry = ToolRegistry()
    registry.validate(enabled)
    if enabled is None:
        return registry
    return ToolRegistry(spec for spec in BUILTIN_TOOLS if spec.name in enabled)


@dataclass
class Runtime:
    settings: Settings
    locks: LockStore
    queue: JobQueue
    tenants: TenantRepository
    conversations: ConversationRepository
    inventory: InventoryRepository
    knowledge: KnowledgeIndex
    leads: LeadRepository
    gateway: DeliveryGateway
    breakers: BreakerSet
    side_effects: SideEffectRunner
    tools: ToolRegistry
    gate: DeduplicationGate
    pipeline: WorkerPipeline
    pool: WorkerPool

    @classmethod
    def build(
        cls,
        settings: Settings,
        *,
        locks: LockStore | None = None,
        queue: JobQueue | None = None,
        tenants: TenantRepository | None = None,
        conversations: ConversationRepository | None = None,
        inventory: InventoryRepository | None = None,
        knowledge: KnowledgeIndex | None = None,
        leads: LeadRepository | None = None,
        gateway: DeliveryGateway | None = None,
        providers: ProviderFactory | None = None,
        clock: Callable[[], float] | None = None,
    ) -> Runtime:
        """Assemble the runtime; explicit arguments override the defaults."""

        if settings.database_url:
            connect = partial(psycopg.connect, settings.database_url)
            tenants = tenants or SqlTenantRepository(get_sessionmaker(settings.database_url))
            conversations = conversations or PostgresConversationRepository(connect)
            inventory = inventory or PostgresInventoryRepository(connect)
            knowledge = knowledge or PgVectorKnowledgeIndex(connect)
            leads = leads or PostgresLeadRepository(connect)
        else:
            logger.warning("DATABASE_URL not set; using in-memory repositories")
            tenants = tenants or InMemoryTenantRepository()
            conversations = conversations or InMemoryConversationRepository()
            inventory = inventory or InMemoryInventoryRepository()
            knowledge = knowledge or InMemoryKnowledgeIndex()
            leads = leads or InMemoryLeadRepository()

        if settings.redis_url:
            locks = locks or RedisLockStore.from_url(
                settings.redis_url, prefix=f"{settings.queue_namespace}:"
            )
            queue = queue or RedisJobQueue.from_url(
                settings.redis_url,
                namespace=settings.queue_namespace,
                visibility_timeout=settings.job_visibility_timeout,
            )
        else:
            locks = locks or InMemoryLockStore()
            queue = queue or InMemoryJobQueue(
                visibility_timeout=settings.job_visibility_timeout
            )

        gateway = gateway or EvolutionGateway(
            settings.gateway_url,
            settings.gateway_api_key,
            timeout=settings.delivery_breaker.call_timeout or 15.0,
        )
        breaker_kwargs: dict[str, Any] = {"clock": clock} if clock else {}
        breakers = BreakerSet.from_settings(settings, **breaker_kwargs)
        side_effects = SideEffectRunner()
        tools = build_tool_registry(settings.enabled_tools)

        gate = DeduplicationGate(
            locks=locks,
            tenants=tenants,
            conversations=conversations,
            queue=queue,
            gateway=gateway,
            side_effects=side_effects,
            message_ttl=settings.dedup_message_ttl,
            content_ttl=settings.dedup_content_ttl,
            content_prefix=settings.dedup_content_prefix,
        )
        pipeline = WorkerPipeline(
            tenants=tenants,
            conversations=conversations,
            inventory=inventory,
            retriever=HybridRetriever(inventory, knowledge),
            providers=providers or ProviderSelector(settings),
            gateway=gateway,
            breakers=breakers,
            locks=locks,
            side_effects=side_effects,
            leads=leads,
            tools=tools,
            tool_max_iterations=settings.tool_max_iterations,
            history_limit=settings.history_limit,
            confidence_threshold=settings.confidence_threshold,
            escalation_mode=settings.escalation_mode,
            reply_grace_seconds=settings.reply_grace_seconds,
            auto_end_threshold=settings.auto_end_threshold,
        )
        pool = WorkerPool(
            queue,
            pipeline,
            concurrency=settings.worker_concurrency,
            max_attempts=settings.job_max_attempts,
            backoff_seconds=settings.job_backoff_seconds,
            claim_timeout=settings.queue_poll_interval,
        )
        return cls(
            settings=settings,
            locks=locks,
            queue=queue,
            tenants=tenants,
            conversations=conversations,
            inventory=inventory,
            knowledge=knowledge,
            leads=leads,
            gateway=gateway,
            breakers=breakers,
            side_effects=side_effects,
            tools=tools,
            gate=gate,
            pipeline=pipeline,
            pool=pool,
        )

    async def start(self) -> None:
        if self.settings.run_workers:
            self.pool.start()

    async def stop(self) -> None:
        await self.pool.stop()
        await self.side_effects.drain(timeout=5)
        await self.queue.close()
        await self.locks.close()

    async def health(self) -> dict[str, Any]:
        """Breaker states, queue statistics and pool metrics."""

        queue_stats = await self.queue.stats()
        breakers = self.breakers.stats()
        degraded = any(b["state"] != "closed" for b in breakers.values())
        return {
            "status": "degraded" if degraded or not queue_stats.is_healthy else "ok",
            "breakers": breakers,
            "queue": queue_stats.as_dict(),
            "workers": self.pool.stats(),
            "side_effects": {
                "pending": self.side_effects.pending,
                "completed": self.side_effects.completed,
                "failures": self.side_effects.failures,
            },
        }
