"""Tenant, agent configuration, channel routing and quota persistence."""

from __future__ import annotations

import threading
from dataclasses import replace
from typing import Optional, Protocol
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session, sessionmaker

from ..models import AgentConfiguration, ChannelInstance, Subscription, Tenant
from .models import (
    ACTIVE_SUBSCRIPTION_STATUSES,
    AgentSettings,
    QuotaStatus,
    SubscriptionRecord,
    TenantRecord,
)


class TenantRepository(Protocol):
    """Read-mostly access to tenant-side configuration."""

    def resolve_tenant_by_instance(self, instance_name: str) -> Optional[TenantRecord]: ...

    def get_tenant(self, tenant_id: UUID) -> Optional[TenantRecord]: ...

    def get_agent_settings(self, tenant_id: UUID) -> AgentSettings: ...

    def check_quota(self, tenant_id: UUID) -> QuotaStatus: ...

    def increment_usage(self, tenant_id: UUID) -> bool: ...


def _to_record(tenant: Tenant) -> TenantRecord:
    return TenantRecord(
        id=tenant.id,
        business_name=tenant.business_name,
        status=tenant.status,
        llm_provider=tenant.llm_provider,
        llm_model=tenant.llm_model,
    )


def _to_settings(config: AgentConfiguration | None) -> AgentSettings:
    if config is None:
        return AgentSettings()
    return AgentSettings(
        enabled=config.enabled,
        maintenance_mode=config.maintenance_mode,
        maintenance_message=config.maintenance_message,
        role_name=config.role_name,
        role_type=config.role_type,
        tone=config.tone,
        use_emojis=config.use_emojis,
        greeting_policy=config.greeting_policy,
        response_length=config.response_length,
        forbidden_topics=tuple(config.forbidden_topics or ()),
        blocked_terms=tuple(config.blocked_terms or ()),
        allowed_tools=(
            tuple(config.allowed_tools) if config.allowed_tools is not None else None
        ),
        min_response_length=config.min_response_length,
        max_response_length=config.max_response_length,
        confidence_threshold=config.confidence_threshold,
        auto_end_after_messages=config.auto_end_after_messages,
    )


def _quota_for(subscription: SubscriptionRecord | Subscription | None) -> QuotaStatus:
    if subscription is None:
        # tenants without a subscription row are in their grace period
        return QuotaStatus(allowed=True, reason="no_subscription")
    if subscription.status not in ACTIVE_SUBSCRIPTION_STATUSES:
        return QuotaStatus(
            allowed=False,
            used=subscription.messages_used,
            limit=subscription.message_limit,
            reason=f"subscription_{subscription.status}",
        )
    if subscription.messages_used >= subscription.message_limit:
        return QuotaStatus(
            allowed=False,
            used=subscription.messages_used,
            limit=subscription.message_limit,
            reason="limit_reached",
        )
    return QuotaStatus(
        allowed=True,
        used=subscription.messages_used,
        limit=subscription.message_limit,
    )


class SqlTenantRepository:
    """SQLAlchemy implementation of :class:`TenantRepository`."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def resolve_tenant_by_instance(self, instance_name: str) -> Optional[TenantRecord]:
        with self._session_factory() as session:
            tenant = session.scalars(
                select(Tenant)
                .join(ChannelInstance, ChannelInstance.tenant_id == Tenant.id)
                .where(ChannelInstance.instance_name == instance_name)
            ).first()
            return _to_record(tenant) if tenant else None

    def get_tenant(self, tenant_id: UUID) -> Optional[TenantRecord]:
        with self._session_factory() as session:
            tenant = session.get(Tenant, tenant_id)
            return _to_record(tenant) if tenant else None

    def get_agent_settings(self, tenant_id: UUID) -> AgentSettings:
        with self._session_factory() as session:
            return _to_settings(session.get(AgentConfiguration, tenant_id))

    def check_quota(self, tenant_id: UUID) -> QuotaStatus:
        with self._session_factory() as session:
            return _quota_for(session.get(Subscription, tenant_id))

    def increment_usage(self, tenant_id: UUID) -> bool:
        """Count one automated reply; never exceeds the subscription limit."""

        with self._session_factory.begin() as session:
            if session.get(Subscription, tenant_id) is None:
                return True
            result = session.execute(
                update(Subscription)
                .where(
                    Subscription.tenant_id == tenant_id,
                    Subscription.status.in_(sorted(ACTIVE_SUBSCRIPTION_STATUSES)),
                    Subscription.messages_used < Subscription.message_limit,
                )
                .values(messages_used=Subscription.messages_used + 1)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1


class InMemoryTenantRepository:
    """In-memory implementation used for tests and local runs."""

    def __init__(self) -> None:
        self._tenants: dict[UUID, TenantRecord] = {}
        self._settings: dict[UUID, AgentSettings] = {}
        self._instances: dict[str, UUID] = {}
        self._subscriptions: dict[UUID, SubscriptionRecord] = {}
        self._lock = threading.Lock()

    def add_tenant(
        self,
        tenant: TenantRecord,
        *,
        settings: AgentSettings | None = None,
        instances: tuple[str, ...] = (),
        subscription: SubscriptionRecord | None = None,
    ) -> TenantRecord:
        with self._lock:
            self._tenants[tenant.id] = tenant
            if settings is not None:
                self._settings[tenant.id] = settings
            for name in instances:
                self._instances[name] = tenant.id
            if subscription is not None:
                self._subscriptions[tenant.id] = subscription
        return tenant

    def update_tenant(self, tenant_id: UUID, **changes) -> None:
        with self._lock:
            self._tenants[tenant_id] = replace(self._tenants[tenant_id], **changes)

    def set_agent_settings(self, tenant_id: UUID, settings: AgentSettings) -> None:
        with self._lock:
            self._settings[tenant_id] = settings

    def resolve_tenant_by_instance(self, instance_name: str) -> Optional[TenantRecord]:
        tenant_id = self._instances.get(instance_name)
        return self._tenants.get(tenant_id) if tenant_id else None

    def get_tenant(self, tenant_id: UUID) -> Optional[TenantRecord]:
        return self._tenants.get(tenant_id)

    def get_agent_settings(self, tenant_id: UUID) -> AgentSettings:
        return self._settings.get(tenant_id, AgentSettings())

    def check_quota(self, tenant_id: UUID) -> QuotaStatus:
        return _quota_for(self._subscriptions.get(tenant_id))

    def increment_usage(self, tenant_id: UUID) -> bool:
        with self._lock:
            subscription = self._subscriptions.get(tenant_id)
            if subscription is None:
                return True
            if not _quota_for(subscription).allowed:
                return False
            self._subscriptions[tenant_id] = replace(
                subscription, messages_used=subscription.messages_used + 1
            )
            return True

    def usage(self, tenant_id: UUID) -> int:
        subscription = self._subscriptions.get(tenant_id)
        return subscription.messages_used if subscription else 0
