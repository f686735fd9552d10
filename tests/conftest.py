import pathlib
import sys
import uuid
from collections import deque
from dataclasses import dataclass

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from autoreply.app_logging import init_logging
from autoreply.config import Settings
from autoreply.conversations.repository import InMemoryConversationRepository
from autoreply.delivery.memory import InMemoryGateway
from autoreply.generation.base import ChatResult, ToolCall
from autoreply.ingest.models import InboundEvent
from autoreply.inventory.repository import InMemoryInventoryRepository, InventoryItem
from autoreply.leads import InMemoryLeadRepository
from autoreply.locks.store import InMemoryLockStore
from autoreply.queue import InMemoryJobQueue
from autoreply.retrieval.knowledge import InMemoryKnowledgeIndex
from autoreply.runtime import Runtime
from autoreply.tenants.models import AgentSettings, SubscriptionRecord, TenantRecord
from autoreply.tenants.repository import InMemoryTenantRepository

INSTANCE = "shop-main"
CUSTOMER = "5511999990001"


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


class ScriptedProvider:
    """Generation provider replaying queued results (or raising queued errors)."""

    def __init__(self, *results, name: str = "openai", tools: bool = True,
                 default: str = "The Trail Running Shoe costs USD 89.90 and is in stock.") -> None:
        self.name = name
        self._tools = tools
        self._results = deque(results)
        self.default = default
        self.calls: list[dict] = []

    def push(self, *results) -> None:
        self._results.extend(results)

    def supports_tools(self) -> bool:
        return self._tools

    async def chat(self, messages, tools=None, temperature=0.7, max_tokens=500):
        self.calls.append(
            {
                "messages": list(messages),
                "tools": tools,
                "temperature": temperature,
                "max_tokens": max_tokens,
            }
        )
        if not self._results:
            return ChatResult(content=self.default, provider=self.name)
        item = self._results.popleft()
        if isinstance(item, BaseException):
            raise item
        if callable(item):
            return await item()
        return item


def tool_call(name: str, call_id: str = "call-1", **arguments) -> ChatResult:
    return ChatResult(
        content=None,
        tool_calls=(ToolCall(id=call_id, name=name, arguments=arguments),),
        finish_reason="tool_calls",
    )


@dataclass
class Harness:
    runtime: Runtime
    provider: ScriptedProvider
    tenant: TenantRecord
    clock: "FakeClock"
    events: int = 0

    @property
    def gateway(self) -> InMemoryGateway:
        return self.runtime.gateway

    @property
    def conversations(self) -> InMemoryConversationRepository:
        return self.runtime.conversations

    @property
    def tenants(self) -> InMemoryTenantRepository:
        return self.runtime.tenants

    @property
    def leads(self) -> InMemoryLeadRepository:
        return self.runtime.leads

    def event(self, text: str, *, message_id: str | None = None,
              address: str = CUSTOMER, instance: str = INSTANCE, **kwargs) -> InboundEvent:
        self.events += 1
        return InboundEvent(
            channel="evolution",
            instance=instance,
            channel_message_id=message_id or f"wamid-{self.events}",
            customer_address=address,
            text=text,
            **kwargs,
        )

    async def enqueue(self, text: str, **kwargs):
        """Push a message through the gate and return the claimed lease."""

        result = await self.runtime.gate.ingest(self.event(text, **kwargs))
        assert result.status.value == "processed", result
        lease = await self.runtime.queue.claim(timeout=0)
        assert lease is not None
        return lease

    def conversation_id(self, address: str = CUSTOMER) -> uuid.UUID:
        conversation, _ = self.conversations.get_or_create_open_conversation(
            self.tenant.id, address
        )
        return conversation.id


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def make_harness(clock):
    def _make(
        *results,
        settings: AgentSettings | None = None,
        subscription: dict | None = None,
        tenant_status: str = "active",
        gateway_state: str = "open",
        knowledge: bool = True,
        provider: ScriptedProvider | None = None,
        **overrides,
    ) -> Harness:
        tenant = TenantRecord(
            id=uuid.uuid4(), business_name="Trail Outfitters", status=tenant_status
        )
        tenants = InMemoryTenantRepository()
        tenants.add_tenant(
            tenant,
            settings=settings or AgentSettings(),
            instances=(INSTANCE,),
            subscription=(
                SubscriptionRecord(tenant_id=tenant.id, **subscription)
                if subscription is not None
                else None
            ),
        )
        inventory = InMemoryInventoryRepository(
            [
                InventoryItem(
                    tenant_id=tenant.id,
                    sku="TRS-42",
                    name="Trail Running Shoe",
                    description="Lightweight shoe with a grippy outsole.",
                    category="footwear",
                    brand="Summit",
                    price=89.9,
                    stock=12,
                ),
                InventoryItem(
                    tenant_id=tenant.id,
                    sku="HKB-01",
                    name="Hiking Boot",
                    category="footwear",
                    brand="Summit",
                    price=149.0,
                    stock=0,
                    metadata={"expected_restock": "2026-11-01"},
                ),
            ]
        )
        index = InMemoryKnowledgeIndex()
        if knowledge:
            index.add(
                tenant.id,
                "returns.md",
                "Returns are accepted within 30 days with the original receipt.",
            )
        provider = provider or ScriptedProvider(*results)
        config = dict(run_workers=False, job_backoff_seconds=0.0)
        config.update(overrides)
        runtime = Runtime.build(
            Settings(**config),
            locks=InMemoryLockStore(clock=clock),
            queue=InMemoryJobQueue(clock=clock),
            tenants=tenants,
            conversations=InMemoryConversationRepository(),
            inventory=inventory,
            knowledge=index,
            gateway=InMemoryGateway(state=gateway_state),
            providers=lambda _tenant: provider,
            clock=clock,
        )
        return Harness(runtime=runtime, provider=provider, tenant=tenant, clock=clock)

    return _make
