"""Context retrieval for automated replies."""

from __future__ import annotations

from .base import (
    KnowledgeSnippet,
    RetrievalOptions,
    RetrievalResult,
    Retriever,
    format_context,
)
from .hybrid import HybridRetriever, extract_keywords
from .knowledge import InMemoryKnowledgeIndex, KnowledgeIndex, PgVectorKnowledgeIndex

__all__ = [
    "HybridRetriever",
    "InMemoryKnowledgeIndex",
    "KnowledgeIndex",
    "KnowledgeSnippet",
    "PgVectorKnowledgeIndex",
    "RetrievalOptions",
    "RetrievalResult",
    "Retriever",
    "extract_keywords",
    "format_context",
]
