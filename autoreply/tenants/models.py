"""Tenant-side records read by the ingestion gate and the worker pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

ACTIVE_SUBSCRIPTION_STATUSES = frozenset({"active", "trial"})


@dataclass(frozen=True)
class TenantRecord:
    id: UUID
    business_name: str
    status: str = "active"
    llm_provider: str | None = None
    llm_model: str | None = None

    @property
    def is_active(self) -> bool:
        return self.status == "active"


@dataclass(frozen=True)
class AgentSettings:
    """Automated-agent configuration of a tenant.

    ``allowed_tools`` of ``None`` offers every registered tool; an empty
    tuple disables tool calling.
    """

    enabled: bool = True
    maintenance_mode: bool = False
    maintenance_message: str | None = None
    role_name: str = "Assistant"
    role_type: str = "support"
    tone: str = "friendly"
    use_emojis: bool = False
    greeting_policy: str = "first_message"
    response_length: str = "medium"
    forbidden_topics: tuple[str, ...] = ()
    blocked_terms: tuple[str, ...] = ()
    allowed_tools: tuple[str, ...] | None = None
    min_response_length: int = 10
    max_response_length: int = 1000
    confidence_threshold: float | None = None
    auto_end_after_messages: int | None = None

    @property
    def accepts_automation(self) -> bool:
        return self.enabled and not self.maintenance_mode


@dataclass(frozen=True)
class QuotaStatus:
    allowed: bool
    used: int = 0
    limit: int | None = None
    reason: str | None = None

    @property
    def remaining(self) -> int | None:
        if self.limit is None:
            return None
        return max(0, self.limit - self.used)


@dataclass(frozen=True)
class SubscriptionRecord:
    tenant_id: UUID
    status: str = "active"
    message_limit: int = 1000
    messages_used: int = 0
