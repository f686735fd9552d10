"""Tenant-scoped lead storage.

One lead exists per tenant and customer address. Each further interaction
bumps its counter and moves it to ``contacted`` unless it already converted.
"""

from __future__ import annotations

import enum
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Protocol
from uuid import UUID, uuid4

import psycopg
from psycopg.rows import dict_row


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeadStatus(str, enum.Enum):
    NEW = "new"
    CONTACTED = "contacted"
    CONVERTED = "converted"


@dataclass
class Lead:
    tenant_id: UUID
    customer_address: str
    intent: str
    id: UUID = field(default_factory=uuid4)
    conversation_id: UUID | None = None
    customer_name: str | None = None
    status: LeadStatus = LeadStatus.NEW
    interaction_count: int = 1
    last_contact_at: datetime = field(default_factory=_utcnow)
    created_at: datetime = field(default_factory=_utcnow)


class LeadRepository(Protocol):
    def record_interaction(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        customer_address: str,
        intent: str,
        customer_name: Optional[str] = None,
    ) -> Lead: ...

    def list_leads(self, tenant_id: UUID, limit: int = 100) -> list[Lead]: ...


def _hydrate(row: dict[str, Any]) -> Lead:
    return Lead(
        id=row["id"],
        tenant_id=row["tenant_id"],
        conversation_id=row.get("conversation_id"),
        customer_address=row["customer_address"],
        customer_name=row.get("customer_name"),
        intent=row["intent"],
        status=LeadStatus(row["status"]),
        interaction_count=int(row["interaction_count"]),
        last_contact_at=row["last_contact_at"],
        created_at=row["created_at"],
    )


class PostgresLeadRepository:
    """PostgreSQL implementation of :class:`LeadRepository`."""

    def __init__(self, connect: Callable[[], psycopg.Connection]) -> None:
        self._connect = connect

    def record_interaction(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        customer_address: str,
        intent: str,
        customer_name: Optional[str] = None,
    ) -> Lead:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                INSERT INTO leads (
                    tenant_id, conversation_id, customer_address, customer_name, intent
                )
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (tenant_id, customer_address) DO UPDATE
                SET interaction_count = leads.interaction_count + 1,
                    status = CASE WHEN leads.status = 'converted'
                                  THEN 'converted' ELSE 'contacted' END,
                    conversation_id = EXCLUDED.conversation_id,
                    customer_name = COALESCE(EXCLUDED.customer_name, leads.customer_name),
                    last_contact_at = now(),
                    updated_at = now()
                RETURNING *
                """,
                (tenant_id, conversation_id, customer_address, customer_name, intent),
            )
            row = cur.fetchone()
        return _hydrate(row)

    def list_leads(self, tenant_id: UUID, limit: int = 100) -> list[Lead]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM leads WHERE tenant_id = %s
                ORDER BY created_at DESC
                LIMIT %s
                """,
                (tenant_id, limit),
            )
            rows = cur.fetchall()
        return [_hydrate(row) for row in rows]


class InMemoryLeadRepository:
    def __init__(self) -> None:
        self._leads: dict[tuple[UUID, str], Lead] = {}
        self._lock = threading.Lock()

    def record_interaction(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        customer_address: str,
        intent: str,
        customer_name: Optional[str] = None,
    ) -> Lead:
        key = (tenant_id, customer_address)
        with self._lock:
            lead = self._leads.get(key)
            if lead is None:
                lead = Lead(
                    tenant_id=tenant_id,
                    conversation_id=conversation_id,
                    customer_address=customer_address,
                    customer_name=customer_name,
                    intent=intent,
                )
                self._leads[key] = lead
            else:
                lead.interaction_count += 1
                if lead.status is not LeadStatus.CONVERTED:
                    lead.status = LeadStatus.CONTACTED
                lead.conversation_id = conversation_id
                lead.customer_name = customer_name or lead.customer_name
                lead.last_contact_at = _utcnow()
            return replace(lead)

    def list_leads(self, tenant_id: UUID, limit: int = 100) -> list[Lead]:
        leads = [replace(lead) for lead in self._leads.values() if lead.tenant_id == tenant_id]
        leads.sort(key=lambda lead: lead.created_at, reverse=True)
        return leads[:limit]
