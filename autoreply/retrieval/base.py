"""Retrieval result types and context formatting."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
from uuid import UUID

from ..inventory.repository import InventoryItem


@dataclass(frozen=True)
class KnowledgeSnippet:
    content: str
    source: str
    score: float
    chunk_index: int = 0


@dataclass(frozen=True)
class RetrievalOptions:
    inventory_limit: int = 10
    knowledge_limit: int = 5
    min_score: float = 0.7


@dataclass(frozen=True)
class RetrievalResult:
    records: tuple[InventoryItem, ...] = ()
    documents: tuple[KnowledgeSnippet, ...] = ()
    duration_ms: float = 0.0

    @property
    def total_count(self) -> int:
        return len(self.records) + len(self.documents)

    @property
    def max_score(self) -> float:
        return max((doc.score for doc in self.documents), default=0.0)

    @property
    def is_empty(self) -> bool:
        return self.total_count == 0


class Retriever(Protocol):
    async def retrieve(
        self, tenant_id: UUID, query: str, options: RetrievalOptions | None = None
    ) -> RetrievalResult: ...


def _format_price(item: InventoryItem) -> str:
    return f"{item.currency} {item.price:,.2f}"


def format_context(result: RetrievalResult) -> str:
    """Render retrieved records and documents as the prompt's context block."""

    sections: list[str] = []
    if result.records:
        lines = ["=== INVENTORY INFORMATION ==="]
        for item in result.records:
            availability = f"{item.stock} in stock" if item.in_stock else "out of stock"
            lines.append(f"- {item.name} (SKU {item.sku}): {_format_price(item)}, {availability}")
            if item.description:
                lines.append(f"  {item.description}")
        sections.append("\n".join(lines))
    if result.documents:
        lines = ["=== KNOWLEDGE BASE ==="]
        for doc in result.documents:
            lines.append(f"[{doc.source}] {doc.content}")
        sections.append("\n".join(lines))
    return "\n\n".join(sections)
