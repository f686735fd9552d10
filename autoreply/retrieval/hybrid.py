"""Inventory keyword search combined with knowledge-base similarity search."""

from __future__ import annotations

import asyncio
import logging
import time
from uuid import UUID

from ..inventory.repository import InventoryItem, InventoryRepository
from .base import KnowledgeSnippet, RetrievalOptions, RetrievalResult
from .knowledge import KnowledgeIndex, _tokenize

logger = logging.getLogger(__name__)

_STOPWORDS = frozenset(
    {
        "the", "and", "for", "are", "you", "your", "have", "has", "any", "can",
        "what", "which", "with", "does", "this", "that", "there", "how", "much",
        "please", "want", "need", "would", "like", "about", "from", "some",
    }
)


def extract_keywords(query: str) -> list[str]:
    """Words longer than two characters that are not stopwords, in order."""

    seen: list[str] = []
    for token in _tokenize(query):
        if len(token) > 2 and token not in _STOPWORDS and token not in seen:
            seen.append(token)
    return seen


def _singular(word: str) -> str:
    if len(word) > 3 and word.endswith("s") and not word.endswith("ss"):
        return word[:-1]
    return word


class HybridRetriever:
    """Query inventory and the knowledge index concurrently.

    Inventory is searched with the full phrase plus each keyword (plural
    keywords also match their singular form); knowledge snippets below the
    score threshold are dropped by the index.
    """

    def __init__(
        self,
        inventory: InventoryRepository,
        knowledge: KnowledgeIndex | None = None,
    ) -> None:
        self._inventory = inventory
        self._knowledge = knowledge

    async def retrieve(
        self, tenant_id: UUID, query: str, options: RetrievalOptions | None = None
    ) -> RetrievalResult:
        options = options or RetrievalOptions()
        started = time.perf_counter()
        records, documents = await asyncio.gather(
            self._search_inventory(tenant_id, query, options.inventory_limit),
            self._search_knowledge(tenant_id, query, options),
        )
        result = RetrievalResult(
            records=tuple(records),
            documents=tuple(documents),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        logger.debug(
            "retrieved %d records and %d documents",
            len(result.records),
            len(result.documents),
            extra={"tenant_id": tenant_id, "duration_ms": round(result.duration_ms, 1)},
        )
        return result

    async def _search_inventory(
        self, tenant_id: UUID, query: str, limit: int
    ) -> list[InventoryItem]:
        keywords = extract_keywords(query)
        if not keywords:
            return []
        terms = [query.strip()]
        for word in keywords:
            for term in (word, _singular(word)):
                if term not in terms:
                    terms.append(term)
        return await asyncio.to_thread(self._inventory.search, tenant_id, terms, limit)

    async def _search_knowledge(
        self, tenant_id: UUID, query: str, options: RetrievalOptions
    ) -> list[KnowledgeSnippet]:
        if self._knowledge is None:
            return []
        return await asyncio.to_thread(
            self._knowledge.search,
            tenant_id,
            query,
            options.knowledge_limit,
            options.min_score,
        )
