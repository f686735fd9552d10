import asyncio
import uuid

import pytest

import autoreply.retrieval.knowledge as knowledge
from autoreply.inventory.repository import InMemoryInventoryRepository, InventoryItem
from autoreply.retrieval.base import KnowledgeSnippet, RetrievalResult, format_context
from autoreply.retrieval.hybrid import HybridRetriever, extract_keywords
from autoreply.retrieval.knowledge import InMemoryKnowledgeIndex, PgVectorKnowledgeIndex

TENANT = uuid.uuid4()


class DummyEmbedder:
    """Embedder stub so no model is downloaded."""

    def __init__(self):
        self.calls = []

    def embed(self, texts):
        self.calls.append(list(texts))
        return [[0.0] * 384 for _ in texts]


class FakeCursor:
    def __init__(self, rows):
        self.rows = rows
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params):
        self.executed.append((sql, params))

    def fetchall(self):
        return self.rows


class FakeConnection:
    def __init__(self, rows):
        self.cursor_obj = FakeCursor(rows)

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self):
        return self.cursor_obj


def test_extract_keywords_drops_stopwords_and_short_words():
    assert extract_keywords("Do you have the trail running shoes in size 42?") == [
        "trail",
        "running",
        "shoes",
        "size",
    ]
    assert extract_keywords("is it ok?") == []


def test_format_context_renders_both_sections():
    result = RetrievalResult(
        records=(
            InventoryItem(TENANT, "TRS-42", "Trail Running Shoe", description="Grippy.",
                          price=1089.5, stock=2),
            InventoryItem(TENANT, "HKB-01", "Hiking Boot", price=149.0, currency="EUR"),
        ),
        documents=(KnowledgeSnippet("Returns within 30 days.", "returns.md", 0.8),),
    )

    assert format_context(result) == (
        "=== INVENTORY INFORMATION ===\n"
        "- Trail Running Shoe (SKU TRS-42): USD 1,089.50, 2 in stock\n"
        "  Grippy.\n"
        "- Hiking Boot (SKU HKB-01): EUR 149.00, out of stock\n"
        "\n"
        "=== KNOWLEDGE BASE ===\n"
        "[returns.md] Returns within 30 days."
    )
    assert format_context(RetrievalResult()) == ""


def test_hybrid_retriever_combines_inventory_and_knowledge():
    inventory = InMemoryInventoryRepository(
        [
            InventoryItem(TENANT, "TRS-42", "Trail Running Shoe", stock=4),
            InventoryItem(TENANT, "HKB-01", "Hiking Boot", stock=1),
            InventoryItem(uuid.uuid4(), "X-1", "Trail Running Shoe", stock=9),
        ]
    )
    index = InMemoryKnowledgeIndex([(TENANT, "care.md", "Clean running shoes with a soft brush.")])
    retriever = HybridRetriever(inventory, index)

    result = asyncio.run(retriever.retrieve(TENANT, "How do I clean running shoes?"))

    assert [item.sku for item in result.records] == ["TRS-42"]
    assert [doc.source for doc in result.documents] == ["care.md"]
    assert result.total_count == 2
    assert not result.is_empty
    assert result.max_score == pytest.approx(0.75)


def test_plural_keywords_match_singular_names():
    inventory = InMemoryInventoryRepository([InventoryItem(TENANT, "HKB-01", "Hiking Boot")])
    result = asyncio.run(HybridRetriever(inventory).retrieve(TENANT, "boots?"))
    assert [item.sku for item in result.records] == ["HKB-01"]


def test_stopword_only_query_finds_nothing():
    inventory = InMemoryInventoryRepository([InventoryItem(TENANT, "TRS-42", "Trail Running Shoe")])
    result = asyncio.run(HybridRetriever(inventory).retrieve(TENANT, "what do you have?"))
    assert result.is_empty


def test_in_memory_index_respects_threshold_and_tenant():
    index = InMemoryKnowledgeIndex()
    index.add(TENANT, "returns.md", "Returns are accepted within 30 days.")
    index.add(uuid.uuid4(), "other.md", "Returns are accepted within 30 days.")

    hits = index.search(TENANT, "returns accepted within days", limit=5, min_score=0.7)
    assert [(h.source, h.score) for h in hits] == [("returns.md", 1.0)]
    assert index.search(TENANT, "shipping to brazil", limit=5, min_score=0.7) == []


def test_bm25_rerank_prefers_keyword_matches():
    snippets = [
        KnowledgeSnippet("Our store opens at nine.", "hours.md", 0.9),
        KnowledgeSnippet("Trail shoes can be returned within 30 days.", "returns.md", 0.8),
        KnowledgeSnippet("We ship nationwide.", "shipping.md", 0.75),
    ]
    ranked = knowledge._bm25_rerank("return trail shoes", snippets)
    assert ranked[0].source == "returns.md"
    assert knowledge._bm25_rerank("x", snippets[:1]) == snippets[:1]


def test_pgvector_index_filters_by_score_and_reranks(monkeypatch):
    registered = []
    monkeypatch.setattr(knowledge, "register_vector", registered.append)
    rows = [
        ("hours.md", 0, "Our store opens at nine.", 0.91),
        ("returns.md", 2, "Trail shoes can be returned within 30 days.", 0.85),
        ("shipping.md", 0, "We ship nationwide.", 0.8),
        ("blog.md", 1, "Unrelated post.", 0.4),
    ]
    conn = FakeConnection(rows)
    embedder = DummyEmbedder()
    index = PgVectorKnowledgeIndex(lambda: conn, embedder=embedder)

    hits = index.search(TENANT, "return trail shoes", limit=1, min_score=0.7)

    assert [(h.source, h.chunk_index) for h in hits] == [("returns.md", 2)]
    assert registered == [conn]
    assert embedder.calls == [["return trail shoes"]]
    sql, params = conn.cursor_obj.executed[0]
    assert "tenant_id = %s" in sql
    assert params[1] == TENANT
    assert params[3] == 20
