"""Tenant-scoped inventory lookups used by retrieval and the tools."""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Protocol
from uuid import UUID

import psycopg
from psycopg.rows import dict_row


@dataclass(frozen=True)
class InventoryItem:
    tenant_id: UUID
    sku: str
    name: str
    description: str = ""
    category: str | None = None
    brand: str | None = None
    price: float = 0.0
    currency: str = "USD"
    stock: int = 0
    location: str | None = None
    status: str = "active"
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def in_stock(self) -> bool:
        return self.stock > 0

    def summary(self) -> dict[str, Any]:
        return {
            "sku": self.sku,
            "name": self.name,
            "category": self.category,
            "brand": self.brand,
            "price": self.price,
            "currency": self.currency,
            "stock": self.stock,
            "available": self.in_stock,
        }


class InventoryRepository(Protocol):
    def search(
        self, tenant_id: UUID, terms: Iterable[str], limit: int = 10
    ) -> list[InventoryItem]: ...

    def get_by_sku(self, tenant_id: UUID, sku: str) -> Optional[InventoryItem]: ...

    def find_alternatives(
        self, tenant_id: UUID, category: str, exclude_sku: str, limit: int = 3
    ) -> list[InventoryItem]: ...


_SEARCH_COLUMNS = ("name", "description", "sku", "brand", "category")


def _hydrate(row: dict[str, Any]) -> InventoryItem:
    price = row.get("price") or 0
    return InventoryItem(
        tenant_id=row["tenant_id"],
        sku=row["sku"],
        name=row["name"],
        description=row.get("description") or "",
        category=row.get("category"),
        brand=row.get("brand"),
        price=float(price) if isinstance(price, (Decimal, int, float)) else 0.0,
        currency=row.get("currency") or "USD",
        stock=int(row.get("stock") or 0),
        location=row.get("location"),
        status=row.get("status") or "active",
        metadata=row.get("metadata") or {},
    )


class PostgresInventoryRepository:
    """PostgreSQL implementation of :class:`InventoryRepository`."""

    def __init__(self, connect: Callable[[], psycopg.Connection]) -> None:
        self._connect = connect

    def search(
        self, tenant_id: UUID, terms: Iterable[str], limit: int = 10
    ) -> list[InventoryItem]:
        patterns = [f"%{term}%" for term in terms if term]
        if not patterns:
            return []
        clauses = " OR ".join(f"{column} ILIKE ANY(%s)" for column in _SEARCH_COLUMNS)
        sql = f"""
            SELECT * FROM inventory_items
            WHERE tenant_id = %s AND status = 'active' AND ({clauses})
            ORDER BY stock DESC, name ASC
            LIMIT %s
        """
        params = (tenant_id, *([patterns] * len(_SEARCH_COLUMNS)), limit)
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(sql, params)
            rows = cur.fetchall()
        return [_hydrate(row) for row in rows]

    def get_by_sku(self, tenant_id: UUID, sku: str) -> Optional[InventoryItem]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                "SELECT * FROM inventory_items WHERE tenant_id = %s AND sku = %s",
                (tenant_id, sku),
            )
            row = cur.fetchone()
        return _hydrate(row) if row else None

    def find_alternatives(
        self, tenant_id: UUID, category: str, exclude_sku: str, limit: int = 3
    ) -> list[InventoryItem]:
        with self._connect() as conn, conn.cursor(row_factory=dict_row) as cur:
            cur.execute(
                """
                SELECT * FROM inventory_items
                WHERE tenant_id = %s AND category = %s AND sku <> %s
                  AND status = 'active' AND stock > 0
                ORDER BY stock DESC, price ASC
                LIMIT %s
                """,
                (tenant_id, category, exclude_sku, limit),
            )
            rows = cur.fetchall()
        return [_hydrate(row) for row in rows]


class InMemoryInventoryRepository:
    def __init__(self, items: Iterable[InventoryItem] = ()) -> None:
        self._items: list[InventoryItem] = list(items)
        self._lock = threading.Lock()

    def add(self, item: InventoryItem) -> InventoryItem:
        with self._lock:
            self._items.append(item)
        return item

    def _active(self, tenant_id: UUID) -> list[InventoryItem]:
        return [i for i in self._items if i.tenant_id == tenant_id and i.status == "active"]

    def search(
        self, tenant_id: UUID, terms: Iterable[str], limit: int = 10
    ) -> list[InventoryItem]:
        needles = [t.lower() for t in terms if t]
        if not needles:
            return []
        matches = []
        for item in self._active(tenant_id):
            haystack = [
                (getattr(item, column) or "").lower() for column in _SEARCH_COLUMNS
            ]
            if any(needle in value for needle in needles for value in haystack):
                matches.append(item)
        matches.sort(key=lambda i: (-i.stock, i.name))
        return matches[:limit]

    def get_by_sku(self, tenant_id: UUID, sku: str) -> Optional[InventoryItem]:
        for item in self._items:
            if item.tenant_id == tenant_id and item.sku == sku:
                return item
        return None

    def find_alternatives(
        self, tenant_id: UUID, category: str, exclude_sku: str, limit: int = 3
    ) -> list[InventoryItem]:
        candidates = [
            i
            for i in self._active(tenant_id)
            if i.category == category and i.sku != exclude_sku and i.in_stock
        ]
        candidates.sort(key=lambda i: (-i.stock, i.price))
        return candidates[:limit]
