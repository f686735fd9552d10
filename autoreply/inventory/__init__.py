"""Inventory catalogue access."""

from __future__ import annotations

from .repository import (
    InMemoryInventoryRepository,
    InventoryItem,
    InventoryRepository,
    PostgresInventoryRepository,
)

__all__ = [
    "InMemoryInventoryRepository",
    "InventoryItem",
    "InventoryRepository",
    "PostgresInventoryRepository",
]
