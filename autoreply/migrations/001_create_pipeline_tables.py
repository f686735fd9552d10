"""Create tenant, conversation, message, inventory and knowledge tables."""

from __future__ import annotations

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "001_create_pipeline_tables"
down_revision = None
branch_labels = None
depends_on = None


_UUID = postgresql.UUID(as_uuid=True)
_EMBEDDING_DIM = 384


def _id_column() -> sa.Column:
    return sa.Column(
        "id",
        _UUID,
        primary_key=True,
        nullable=False,
        server_default=sa.text("gen_random_uuid()"),
    )


def _tenant_fk(primary_key: bool = False) -> sa.Column:
    return sa.Column(
        "tenant_id",
        _UUID,
        sa.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=False,
        primary_key=primary_key,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("now()"),
        ),
    ]


def upgrade() -> None:
    """Create pipeline tables with their idempotency constraints."""

    op.execute("CREATE EXTENSION IF NOT EXISTS vector")

    op.create_table(
        "tenants",
        _id_column(),
        sa.Column("business_name", sa.String(length=255), nullable=False),
        sa.Column(
            "status",
            sa.String(length=32),
            nullable=False,
            server_default=sa.text("'active'"),
        ),
        sa.Column("llm_provider", sa.String(length=64)),
        sa.Column("llm_model", sa.String(length=128)),
        *_timestamps(),
    )

    op.create_table(
        "agent_configurations",
        _tenant_fk(primary_key=True),
        sa.Column("enabled", sa.Boolean, nullable=False, server_default=sa.text("true")),
        sa.Column(
            "maintenance_mode", sa.Boolean, nullable=False, server_default=sa.text("false")
        ),
        sa.Column("maintenance_message", sa.Text),
        sa.Column(
            "role_name", sa.String(length=128), nullable=False, server_default="Assistant"
        ),
        sa.Column(
            "role_type", sa.String(length=64), nullable=False, server_default="support"
        ),
        sa.Column("tone", sa.String(length=32), nullable=False, server_default="friendly"),
        sa.Column("use_emojis", sa.Boolean, nullable=False, server_default=sa.text("false")),
        sa.Column(
            "greeting_policy",
            sa.String(length=32),
            nullable=False,
            server_default="first_message",
        ),
        sa.Column(
            "response_length", sa.String(length=16), nullable=False, server_default="medium"
        ),
        sa.Column(
            "forbidden_topics", sa.JSON, nullable=False, server_default=sa.text("'[]'")
        ),
        sa.Column("blocked_terms", sa.JSON, nullable=False, server_default=sa.text("'[]'")),
        sa.Column("allowed_tools", sa.JSON),
        sa.Column(
            "min_response_length", sa.Integer, nullable=False, server_default=sa.text("10")
        ),
        sa.Column(
            "max_response_length", sa.Integer, nullable=False, server_default=sa.text("1000")
        ),
        sa.Column("confidence_threshold", sa.Float),
        sa.Column("auto_end_after_messages", sa.Integer),
        sa.Column("extra", sa.JSON, nullable=False, server_default=sa.text("'{}'")),
    )

    op.create_table(
        "channel_instances",
        _id_column(),
        _tenant_fk(),
        sa.Column("instance_name", sa.String(length=255), nullable=False),
        sa.Column("channel", sa.String(length=32), nullable=False, server_default="evolution"),
    )
    op.create_index(
        "ix_channel_instances_name_unique",
        "channel_instances",
        ["instance_name"],
        unique=True,
    )
    op.create_index("ix_channel_instances_tenant_id", "channel_instances", ["tenant_id"])

    op.create_table(
        "subscriptions",
        _tenant_fk(primary_key=True),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="active"),
        sa.Column(
            "message_limit", sa.Integer, nullable=False, server_default=sa.text("1000")
        ),
        sa.Column("messages_used", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("period_end", sa.DateTime(timezone=True)),
        sa.CheckConstraint(
            "messages_used <= message_limit", name="ck_subscriptions_usage_ceiling"
        ),
    )

    op.create_table(
        "conversations",
        _id_column(),
        _tenant_fk(),
        sa.Column("customer_address", sa.String(length=32), nullable=False),
        sa.Column("customer_name", sa.String(length=255)),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column(
            "assignment", sa.String(length=16), nullable=False, server_default="automated"
        ),
        sa.Column("escalation_reason", sa.Text),
        sa.Column("last_message_at", sa.DateTime(timezone=True)),
        *_timestamps(),
    )
    # one open conversation per customer and tenant
    op.create_index(
        "ux_conversations_open_customer",
        "conversations",
        ["tenant_id", "customer_address"],
        unique=True,
        postgresql_where=sa.text("status <> 'closed'"),
    )

    op.create_table(
        "messages",
        _id_column(),
        _tenant_fk(),
        sa.Column(
            "conversation_id",
            _UUID,
            sa.ForeignKey("conversations.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("direction", sa.String(length=16), nullable=False),
        sa.Column("sender", sa.String(length=16), nullable=False),
        sa.Column("body", sa.Text, nullable=False),
        sa.Column("delivery_status", sa.String(length=16)),
        sa.Column("channel_message_id", sa.String(length=255)),
        sa.Column(
            "reply_to_id",
            _UUID,
            sa.ForeignKey("messages.id", ondelete="SET NULL"),
        ),
        sa.Column("confidence", sa.Float),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ux_messages_inbound_channel_id",
        "messages",
        ["tenant_id", "channel_message_id"],
        unique=True,
        postgresql_where=sa.text("direction = 'inbound'"),
    )
    op.create_index(
        "ix_messages_conversation_created",
        "messages",
        ["conversation_id", "created_at"],
    )
    op.create_index("ix_messages_reply_to", "messages", ["reply_to_id"])

    op.create_table(
        "inventory_items",
        _id_column(),
        _tenant_fk(),
        sa.Column("sku", sa.String(length=128), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text),
        sa.Column("category", sa.String(length=128)),
        sa.Column("brand", sa.String(length=128)),
        sa.Column("price", sa.Numeric(12, 2), nullable=False, server_default=sa.text("0")),
        sa.Column("currency", sa.String(length=8), nullable=False, server_default="USD"),
        sa.Column("stock", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("location", sa.String(length=128)),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="active"),
        sa.Column(
            "metadata",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        *_timestamps(),
    )
    op.create_index(
        "ux_inventory_items_tenant_sku",
        "inventory_items",
        ["tenant_id", "sku"],
        unique=True,
    )

    op.create_table(
        "knowledge_chunks",
        _id_column(),
        _tenant_fk(),
        sa.Column("source", sa.String(length=512), nullable=False),
        sa.Column("chunk_index", sa.Integer, nullable=False, server_default=sa.text("0")),
        sa.Column("content", sa.Text, nullable=False),
        *_timestamps(),
    )
    op.execute(
        f"ALTER TABLE knowledge_chunks ADD COLUMN embedding vector({_EMBEDDING_DIM})"
    )
    op.create_index("ix_knowledge_chunks_tenant", "knowledge_chunks", ["tenant_id"])


def downgrade() -> None:
    """Drop pipeline tables in dependency order."""

    op.drop_index("ix_knowledge_chunks_tenant", table_name="knowledge_chunks")
    op.drop_table("knowledge_chunks")
    op.drop_index("ux_inventory_items_tenant_sku", table_name="inventory_items")
    op.drop_table("inventory_items")
    op.drop_index("ix_messages_reply_to", table_name="messages")
    op.drop_index("ix_messages_conversation_created", table_name="messages")
    op.drop_index("ux_messages_inbound_channel_id", table_name="messages")
    op.drop_table("messages")
    op.drop_index("ux_conversations_open_customer", table_name="conversations")
    op.drop_table("conversations")
    op.drop_table("subscriptions")
    op.drop_index("ix_channel_instances_tenant_id", table_name="channel_instances")
    op.drop_index("ix_channel_instances_name_unique", table_name="channel_instances")
    op.drop_table("channel_instances")
    op.drop_table("agent_configurations")
    op.drop_table("tenants")
