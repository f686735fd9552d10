"""SQLAlchemy declarative base and tenant-side models.

The tenant-facing tables (tenants, automated-agent configuration, channel
instances and usage subscriptions) are mapped with the ORM. Conversation,
message and inventory tables are accessed with raw SQL; all tables are
created by the migration in ``autoreply/migrations``.
"""

from __future__ import annotations

from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy declarative models."""


# Re-export tenant models so callers can import them via ``autoreply.models``.
from .tenant import AgentConfiguration, ChannelInstance, Subscription, Tenant


__all__ = [
    "AgentConfiguration",
    "Base",
    "ChannelInstance",
    "Subscription",
    "Tenant",
]
