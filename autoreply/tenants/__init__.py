"""Tenant records, agent settings and quota checks."""

from __future__ import annotations

from .models import AgentSettings, QuotaStatus, SubscriptionRecord, TenantRecord
from .repository import InMemoryTenantRepository, SqlTenantRepository, TenantRepository

__all__ = [
    "AgentSettings",
    "InMemoryTenantRepository",
    "QuotaStatus",
    "SqlTenantRepository",
    "SubscriptionRecord",
    "TenantRecord",
    "TenantRepository",
]
