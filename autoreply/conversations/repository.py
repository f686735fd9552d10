"""Persistence for conversations and messages."""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import replace
from datetime import datetime
from typing import Any, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..errors import ConversationNotFoundError, InvalidTransitionError
from .models import (
    DELIVERY_TRANSITIONS,
    LIVE_REPLY_STATUSES,
    Assignment,
    Conversation,
    ConversationStatus,
    DeliveryStatus,
    Direction,
    Message,
    Sender,
)


class ConversationRepository(Protocol):
    """Abstraction for persisting conversations and messages."""

    def get_or_create_open_conversation(
        self, tenant_id: UUID, customer_address: str, customer_name: Optional[str] = None
    ) -> tuple[Conversation, bool]: ...

    def get_conversation(
        self, tenant_id: UUID, conversation_id: UUID
    ) -> Optional[Conversation]: ...

    def count_messages(self, tenant_id: UUID, conversation_id: UUID) -> int: ...

    def add_inbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        channel_message_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Message]: ...

    def get_message(self, tenant_id: UUID, message_id: UUID) -> Optional[Message]: ...

    def has_live_reply(self, tenant_id: UUID, inbound_message_id: UUID) -> bool: ...

    def add_outbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        *,
        reply_to_id: Optional[UUID] = None,
        delivery_status: Optional[DeliveryStatus] = DeliveryStatus.PENDING,
        confidence: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message: ...

    def update_delivery_status(
        self,
        tenant_id: UUID,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        channel_message_id: Optional[str] = None,
    ) -> Message: ...

    def recent_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: int
    ) -> list[Message]: ...

    def escalate(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        reason: str,
        *,
        assign_to_human: bool = False,
    ) -> bool: ...

    def flag(self, tenant_id: UUID, conversation_id: UUID, reason: str) -> bool: ...

    def close_conversation(self, tenant_id: UUID, conversation_id: UUID) -> None: ...

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None: ...


def _hydrate_conversation(row: dict[str, Any]) -> Conversation:
    return Conversation(
        id=row["id"],
        tenant_id=row["tenant_id"],
        customer_address=row["customer_address"],
        customer_name=row.get("customer_name"),
        status=ConversationStatus(row["status"]),
        assignment=Assignment(row["assignment"]),
        escalation_reason=row.get("escalation_reason"),
        last_message_at=row.get("last_message_at"),
        created_at=row["created_at"],
    )


def _hydrate_message(row: dict[str, Any]) -> Message:
    status = row.get("delivery_status")
    return Message(
        id=row["id"],
        tenant_id=row["tenant_id"],
        conversation_id=row["conversation_id"],
        direction=Direction(row["direction"]),
        sender=Sender(row["sender"]),
        text=row["body"],
        delivery_status=DeliveryStatus(status) if status else None,
        channel_message_id=row.get("channel_message_id"),
        reply_to_id=row.get("reply_to_id"),
        confidence=row.get("confidence"),
        metadata=row.get("metadata") or {},
        created_at=row["created_at"],
    )


class PostgresConversationRepository:
    """PostgreSQL implementation of :class:`ConversationRepository`.

    ``connect`` returns a new psycopg connection; each operation runs in its
    own short transaction so the repository can be shared by workers.
    """

    def __init__(self, connect: Callable[[], psycopg.Connection]) -> None:
        self._connect = connect

    # Utility -----------------------------------------------------------------
    def _fetchone(self, sql: str, params: tuple[Any, ...]) -> Optional[dict[str, Any]]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return cur.fetchone()

    def _fetchall(self, sql: str, params: tuple[Any, ...]) -> list[dict[str, Any]]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            return list(cur.fetchall())

    def _execute(self, sql: str, params: tuple[Any, ...]) -> int:
        with self._connect() as conn, conn.cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    # Conversation operations --------------------------------------------------
    def get_or_create_open_conversation(
        self, tenant_id: UUID, customer_address: str, customer_name: Optional[str] = None
    ) -> tuple[Conversation, bool]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                INSERT INTO conversations (tenant_id, customer_address, customer_name)
                VALUES (%s, %s, %s)
                ON CONFLICT (tenant_id, customer_address) WHERE status <> 'closed'
                DO NOTHING
                RETURNING *
                """,
                (tenant_id, customer_address, customer_name),
            )
            row = cur.fetchone()
            if row:
                return _hydrate_conversation(row), True
            cur.execute(
                """
                SELECT * FROM conversations
                WHERE tenant_id = %s AND customer_address = %s AND status <> 'closed'
                """,
                (tenant_id, customer_address),
            )
            row = cur.fetchone()
        if not row:  # pragma: no cover - closed between insert and select
            raise ConversationNotFoundError(
                f"No open conversation for {customer_address}"
            )
        return _hydrate_conversation(row), False

    def get_conversation(
        self, tenant_id: UUID, conversation_id: UUID
    ) -> Optional[Conversation]:
        row = self._fetchone(
            "SELECT * FROM conversations WHERE tenant_id = %s AND id = %s",
            (tenant_id, conversation_id),
        )
        return _hydrate_conversation(row) if row else None

    def count_messages(self, tenant_id: UUID, conversation_id: UUID) -> int:
        row = self._fetchone(
            """
            SELECT count(*) AS total FROM messages
            WHERE tenant_id = %s AND conversation_id = %s
            """,
            (tenant_id, conversation_id),
        )
        return int(row["total"]) if row else 0

    def escalate(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        reason: str,
        *,
        assign_to_human: bool = False,
    ) -> bool:
        """Escalate an open conversation; closed conversations are left alone."""

        updated = self._execute(
            """
            UPDATE conversations
            SET status = 'escalated',
                escalation_reason = %s,
                assignment = CASE WHEN %s THEN 'human' ELSE assignment END,
                updated_at = now()
            WHERE tenant_id = %s AND id = %s AND status <> 'closed'
            """,
            (reason, assign_to_human, tenant_id, conversation_id),
        )
        return self._updated_or_closed(updated, tenant_id, conversation_id)

    def flag(self, tenant_id: UUID, conversation_id: UUID, reason: str) -> bool:
        updated = self._execute(
            """
            UPDATE conversations SET escalation_reason = %s, updated_at = now()
            WHERE tenant_id = %s AND id = %s AND status <> 'closed'
            """,
            (reason, tenant_id, conversation_id),
        )
        return self._updated_or_closed(updated, tenant_id, conversation_id)

    def _updated_or_closed(
        self, updated: int, tenant_id: UUID, conversation_id: UUID
    ) -> bool:
        if updated:
            return True
        if self.get_conversation(tenant_id, conversation_id) is None:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return False

    def close_conversation(self, tenant_id: UUID, conversation_id: UUID) -> None:
        self._execute(
            """
            UPDATE conversations SET status = 'closed', updated_at = now()
            WHERE tenant_id = %s AND id = %s
            """,
            (tenant_id, conversation_id),
        )

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None:
        self._execute(
            """
            UPDATE conversations SET last_message_at = %s, updated_at = now()
            WHERE tenant_id = %s AND id = %s
            """,
            (at, tenant_id, conversation_id),
        )

    # Message operations -------------------------------------------------------
    def add_inbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        channel_message_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Message]:
        row = self._fetchone(
            """
            INSERT INTO messages
                (tenant_id, conversation_id, direction, sender, body, channel_message_id, metadata)
            VALUES (%s, %s, 'inbound', 'customer', %s, %s, %s)
            ON CONFLICT (tenant_id, channel_message_id) WHERE direction = 'inbound'
            DO NOTHING
            RETURNING *
            """,
            (tenant_id, conversation_id, text, channel_message_id, Jsonb(metadata or {})),
        )
        return _hydrate_message(row) if row else None

    def get_message(self, tenant_id: UUID, message_id: UUID) -> Optional[Message]:
        row = self._fetchone(
            "SELECT * FROM messages WHERE tenant_id = %s AND id = %s",
            (tenant_id, message_id),
        )
        return _hydrate_message(row) if row else None

    def has_live_reply(self, tenant_id: UUID, inbound_message_id: UUID) -> bool:
        row = self._fetchone(
            """
            SELECT 1 AS found FROM messages
            WHERE tenant_id = %s AND reply_to_id = %s AND direction = 'outbound'
              AND delivery_status = ANY(%s)
            LIMIT 1
            """,
            (
                tenant_id,
                inbound_message_id,
                [status.value for status in LIVE_REPLY_STATUSES],
            ),
        )
        return row is not None

    def add_outbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        *,
        reply_to_id: Optional[UUID] = None,
        delivery_status: Optional[DeliveryStatus] = DeliveryStatus.PENDING,
        confidence: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        row = self._fetchone(
            """
            INSERT INTO messages
                (tenant_id, conversation_id, direction, sender, body, delivery_status,
                 reply_to_id, confidence, metadata)
            VALUES (%s, %s, 'outbound', 'automated', %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (
                tenant_id,
                conversation_id,
                text,
                delivery_status.value if delivery_status else None,
                reply_to_id,
                confidence,
                Jsonb(metadata or {}),
            ),
        )
        assert row is not None
        return _hydrate_message(row)

    def update_delivery_status(
        self,
        tenant_id: UUID,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        channel_message_id: Optional[str] = None,
    ) -> Message:
        allowed = DELIVERY_TRANSITIONS.get(status, frozenset())
        row = self._fetchone(
            """
            UPDATE messages
            SET delivery_status = %s,
                channel_message_id = COALESCE(%s, channel_message_id),
                updated_at = now()
            WHERE tenant_id = %s AND id = %s AND direction = 'outbound'
              AND delivery_status = ANY(%s)
            RETURNING *
            """,
            (
                status.value,
                channel_message_id,
                tenant_id,
                message_id,
                [s.value for s in allowed],
            ),
        )
        if row:
            return _hydrate_message(row)
        current = self.get_message(tenant_id, message_id)
        raise InvalidTransitionError(
            f"Cannot move message {message_id} from "
            f"{current.delivery_status if current else 'missing'} to {status.value}"
        )

    def recent_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: int
    ) -> list[Message]:
        rows = self._fetchall(
            """
            SELECT * FROM (
                SELECT * FROM messages
                WHERE tenant_id = %s AND conversation_id = %s
                  AND (direction = 'inbound' OR delivery_status = 'sent')
                ORDER BY created_at DESC
                LIMIT %s
            ) recent
            ORDER BY created_at ASC
            """,
            (tenant_id, conversation_id, limit),
        )
        return [_hydrate_message(row) for row in rows]


class InMemoryConversationRepository:
    """Thread-safe in-memory implementation used for tests and local runs."""

    def __init__(self) -> None:
        self._conversations: dict[UUID, Conversation] = {}
        self._messages: dict[UUID, Message] = {}
        self._lock = threading.Lock()

    def _require(self, tenant_id: UUID, conversation_id: UUID) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            raise ConversationNotFoundError(f"Conversation {conversation_id} not found")
        return conversation

    def get_or_create_open_conversation(
        self, tenant_id: UUID, customer_address: str, customer_name: Optional[str] = None
    ) -> tuple[Conversation, bool]:
        with self._lock:
            for conversation in self._conversations.values():
                if (
                    conversation.tenant_id == tenant_id
                    and conversation.customer_address == customer_address
                    and conversation.is_open
                ):
                    return replace(conversation), False
            conversation = Conversation(
                tenant_id=tenant_id,
                customer_address=customer_address,
                customer_name=customer_name,
            )
            self._conversations[conversation.id] = conversation
            return replace(conversation), True

    def add_conversation(self, conversation: Conversation) -> Conversation:
        with self._lock:
            self._conversations[conversation.id] = conversation
        return conversation

    def get_conversation(
        self, tenant_id: UUID, conversation_id: UUID
    ) -> Optional[Conversation]:
        conversation = self._conversations.get(conversation_id)
        if conversation is None or conversation.tenant_id != tenant_id:
            return None
        return replace(conversation)

    def count_messages(self, tenant_id: UUID, conversation_id: UUID) -> int:
        return sum(
            1
            for m in self._messages.values()
            if m.tenant_id == tenant_id and m.conversation_id == conversation_id
        )

    def escalate(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        reason: str,
        *,
        assign_to_human: bool = False,
    ) -> bool:
        with self._lock:
            conversation = self._require(tenant_id, conversation_id)
            if not conversation.is_open:
                return False
            conversation.status = ConversationStatus.ESCALATED
            conversation.escalation_reason = reason
            if assign_to_human:
                conversation.assignment = Assignment.HUMAN
            return True

    def flag(self, tenant_id: UUID, conversation_id: UUID, reason: str) -> bool:
        with self._lock:
            conversation = self._require(tenant_id, conversation_id)
            if not conversation.is_open:
                return False
            conversation.escalation_reason = reason
            return True

    def close_conversation(self, tenant_id: UUID, conversation_id: UUID) -> None:
        with self._lock:
            self._require(tenant_id, conversation_id).status = ConversationStatus.CLOSED

    def touch(self, tenant_id: UUID, conversation_id: UUID, at: datetime) -> None:
        with self._lock:
            self._require(tenant_id, conversation_id).last_message_at = at

    def add_inbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        channel_message_id: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Optional[Message]:
        with self._lock:
            self._require(tenant_id, conversation_id)
            for existing in self._messages.values():
                if (
                    existing.tenant_id == tenant_id
                    and existing.direction is Direction.INBOUND
                    and existing.channel_message_id == channel_message_id
                ):
                    return None
            message = Message(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                direction=Direction.INBOUND,
                sender=Sender.CUSTOMER,
                text=text,
                channel_message_id=channel_message_id,
                metadata=dict(metadata or {}),
            )
            self._messages[message.id] = message
            return replace(message)

    def get_message(self, tenant_id: UUID, message_id: UUID) -> Optional[Message]:
        message = self._messages.get(message_id)
        if message is None or message.tenant_id != tenant_id:
            return None
        return replace(message)

    def has_live_reply(self, tenant_id: UUID, inbound_message_id: UUID) -> bool:
        return any(
            m.tenant_id == tenant_id
            and m.reply_to_id == inbound_message_id
            and m.direction is Direction.OUTBOUND
            and m.delivery_status in LIVE_REPLY_STATUSES
            for m in self._messages.values()
        )

    def add_outbound_message(
        self,
        tenant_id: UUID,
        conversation_id: UUID,
        text: str,
        *,
        reply_to_id: Optional[UUID] = None,
        delivery_status: Optional[DeliveryStatus] = DeliveryStatus.PENDING,
        confidence: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        with self._lock:
            self._require(tenant_id, conversation_id)
            message = Message(
                tenant_id=tenant_id,
                conversation_id=conversation_id,
                direction=Direction.OUTBOUND,
                sender=Sender.AUTOMATED,
                text=text,
                delivery_status=delivery_status,
                reply_to_id=reply_to_id,
                confidence=confidence,
                metadata=dict(metadata or {}),
            )
            self._messages[message.id] = message
            return replace(message)

    def update_delivery_status(
        self,
        tenant_id: UUID,
        message_id: UUID,
        status: DeliveryStatus,
        *,
        channel_message_id: Optional[str] = None,
    ) -> Message:
        with self._lock:
            message = self._messages.get(message_id)
            if message is None or message.tenant_id != tenant_id:
                raise InvalidTransitionError(f"Message {message_id} not found")
            allowed = DELIVERY_TRANSITIONS.get(status, frozenset())
            if message.direction is not Direction.OUTBOUND or message.delivery_status not in allowed:
                raise InvalidTransitionError(
                    f"Cannot move message {message_id} from "
                    f"{message.delivery_status} to {status.value}"
                )
            message.delivery_status = status
            if channel_message_id:
                message.channel_message_id = channel_message_id
            return replace(message)

    def recent_messages(
        self, tenant_id: UUID, conversation_id: UUID, limit: int
    ) -> list[Message]:
        selected = [
            m
            for m in self._messages.values()
            if m.tenant_id == tenant_id
            and m.conversation_id == conversation_id
            and (m.direction is Direction.INBOUND or m.delivery_status is DeliveryStatus.SENT)
        ]
        selected.sort(key=lambda m: m.created_at)
        return [replace(m) for m in selected[-limit:]] if limit > 0 else []

    # Test helpers --------------------------------------------------------------
    def messages(self, conversation_id: Optional[UUID] = None) -> list[Message]:
        items = [
            replace(m)
            for m in self._messages.values()
            if conversation_id is None or m.conversation_id == conversation_id
        ]
        items.sort(key=lambda m: m.created_at)
        return items


