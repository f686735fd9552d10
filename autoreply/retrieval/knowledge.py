"""Knowledge-base search (vector search + lexical reranking).

- Creates a ``TextEmbedding`` instance for multilingual sentence embeddings
  on first use.
- Queries pgvector by cosine distance, scoped to the tenant.
- Applies an optional lightweight lexical reranker (BM25) over the candidates
  to improve the final ordering for short, keyworded queries.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from typing import List, Protocol
from uuid import UUID

import psycopg
from fastembed import TextEmbedding
from pgvector.psycopg import register_vector
from rank_bm25 import BM25Okapi

from .base import KnowledgeSnippet

DEFAULT_EMBEDDING_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"


class KnowledgeIndex(Protocol):
    def search(
        self, tenant_id: UUID, query: str, limit: int, min_score: float
    ) -> list[KnowledgeSnippet]: ...


def _tokenize(text: str) -> List[str]:
    """Very small tokenizer for BM25: lowercase and keep only alpha-numerics."""
    return [
        t.lower()
        for t in "".join(c if c.isalnum() else " " for c in text).split()
        if t
    ]


def _bm25_rerank(query: str, snippets: List[KnowledgeSnippet]) -> List[KnowledgeSnippet]:
    """Reorder vector candidates by BM25 score; ties keep vector order."""
    if len(snippets) < 2:
        return snippets
    bm25 = BM25Okapi([_tokenize(s.content) for s in snippets])
    scores = bm25.get_scores(_tokenize(query))
    ranked = sorted(
        zip(scores, range(len(snippets)), snippets), key=lambda x: (-x[0], x[1])
    )
    return [s for _, _, s in ranked]


class PgVectorKnowledgeIndex:
    """Tenant-scoped similarity search over ``knowledge_chunks``."""

    def __init__(
        self,
        connect: Callable[[], psycopg.Connection],
        model_name: str = DEFAULT_EMBEDDING_MODEL,
        embedder: TextEmbedding | None = None,
    ) -> None:
        self._connect = connect
        self._model_name = model_name
        self._embedder = embedder

    @property
    def embedder(self) -> TextEmbedding:
        if self._embedder is None:
            self._embedder = TextEmbedding(model_name=self._model_name)
        return self._embedder

    def search(
        self, tenant_id: UUID, query: str, limit: int, min_score: float
    ) -> list[KnowledgeSnippet]:
        qvec = list(self.embedder.embed([query]))[0]
        # over-fetch so the reranker has headroom
        pre_k = max(limit * 4, 20)
        sql = """
        SELECT source, chunk_index, content, 1 - (embedding <=> %s) AS score
        FROM knowledge_chunks
        WHERE tenant_id = %s AND embedding IS NOT NULL
        ORDER BY embedding <=> %s
        LIMIT %s
        """
        with self._connect() as conn:
            register_vector(conn)
            with conn.cursor() as cur:
                cur.execute(sql, (qvec, tenant_id, qvec, pre_k))
                rows = cur.fetchall()
        candidates = [
            KnowledgeSnippet(
                content=content, source=source, score=float(score), chunk_index=idx
            )
            for source, idx, content, score in rows
            if score is not None and float(score) >= min_score
        ]
        return _bm25_rerank(query, candidates)[:limit]


class InMemoryKnowledgeIndex:
    """Keyword-overlap index for tests and local runs."""

    def __init__(self, documents: Iterable[tuple[UUID, str, str]] = ()) -> None:
        self._documents: list[tuple[UUID, str, str]] = list(documents)

    def add(self, tenant_id: UUID, source: str, content: str) -> None:
        self._documents.append((tenant_id, source, content))

    def search(
        self, tenant_id: UUID, query: str, limit: int, min_score: float
    ) -> list[KnowledgeSnippet]:
        query_terms = {t for t in _tokenize(query) if len(t) > 2}
        if not query_terms:
            return []
        snippets = []
        for owner, source, content in self._documents:
            if owner != tenant_id:
                continue
            terms = set(_tokenize(content))
            score = len(query_terms & terms) / len(query_terms)
            if score >= min_score:
                snippets.append(KnowledgeSnippet(content=content, source=source, score=score))
        snippets.sort(key=lambda s: -s.score)
        return snippets[:limit]
