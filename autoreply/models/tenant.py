"""Tenant-related SQLAlchemy models.

They mirror the DDL maintained in
``autoreply/migrations/001_create_pipeline_tables.py``.
"""

from __future__ import annotations

import datetime as dt
import uuid
from typing import Any, List, Optional

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Index, Integer, String, Text, text
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from . import Base


def _utcnow() -> dt.datetime:
    """Return the current UTC timestamp with timezone awareness."""

    return dt.datetime.now(dt.timezone.utc)


class Tenant(Base):
    """An isolated customer account.

    Attributes:
        id: Primary key generated via ``gen_random_uuid`` in Postgres.
        business_name: Display name used in prompts.
        status: ``active`` tenants receive automated replies; anything else
            (``suspended``, ``cancelled``) is escalated.
        llm_provider: Optional provider override for generation.
        llm_model: Optional model override for generation.
    """

    __tablename__ = "tenants"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    business_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(length=32),
        nullable=False,
        default="active",
        server_default=text("'active'"),
    )
    llm_provider: Mapped[Optional[str]] = mapped_column(String(length=64))
    llm_model: Mapped[Optional[str]] = mapped_column(String(length=128))
    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
    )

    agent_configuration: Mapped[Optional["AgentConfiguration"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )
    channel_instances: Mapped[List["ChannelInstance"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    subscription: Mapped[Optional["Subscription"]] = relationship(
        back_populates="tenant",
        cascade="all, delete-orphan",
        passive_deletes=True,
        uselist=False,
    )


class AgentConfiguration(Base):
    """Per-tenant configuration of the automated agent."""

    __tablename__ = "agent_configurations"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True,
    )
    enabled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=text("true")
    )
    maintenance_mode: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=text("false")
    )
    maintenance_message: Mapped[Optional[str]] = mapped_column(Text)
    role_name: Mapped[str] = mapped_column(
        String(length=128), nullable=False, default="Assistant"
    )
    role_type: Mapped[str] = mapped_column(
        String(length=64), nullable=False, default="support"
    )
    tone: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="friendly"
    )
    use_emojis: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    greeting_policy: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="first_message"
    )
    response_length: Mapped[str] = mapped_column(
        String(length=16), nullable=False, default="medium"
    )
    forbidden_topics: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    blocked_terms: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    allowed_tools: Mapped[Optional[List[str]]] = mapped_column(JSON)
    min_response_length: Mapped[int] = mapped_column(Integer, nullable=False, default=10)
    max_response_length: Mapped[int] = mapped_column(
        Integer, nullable=False, default=1000
    )
    confidence_threshold: Mapped[Optional[float]] = mapped_column(Float)
    auto_end_after_messages: Mapped[Optional[int]] = mapped_column(Integer)
    extra: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    tenant: Mapped[Tenant] = relationship(back_populates="agent_configuration")


class ChannelInstance(Base):
    """A connected gateway session (one customer-facing number) of a tenant."""

    __tablename__ = "channel_instances"
    __table_args__ = (
        Index("ix_channel_instances_name_unique", "instance_name", unique=True),
        Index("ix_channel_instances_tenant_id", "tenant_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
        server_default=text("gen_random_uuid()"),
    )
    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
    )
    instance_name: Mapped[str] = mapped_column(String(length=255), nullable=False)
    channel: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="evolution"
    )

    tenant: Mapped[Tenant] = relationship(back_populates="channel_instances")


class Subscription(Base):
    """Monthly message allowance of a tenant."""

    __tablename__ = "subscriptions"

    tenant_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("tenants.id", ondelete="CASCADE"),
        primary_key=True,
    )
    status: Mapped[str] = mapped_column(
        String(length=32), nullable=False, default="active"
    )
    message_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=1000)
    messages_used: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0, server_default=text("0")
    )
    period_end: Mapped[Optional[dt.datetime]] = mapped_column(DateTime(timezone=True))

    tenant: Mapped[Tenant] = relationship(back_populates="subscription")
