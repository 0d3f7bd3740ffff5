"""Unit tests for the vector stores and the LangChain retriever adapter."""

from __future__ import annotations

from collections.abc import Callable
from uuid import uuid4

import chromadb
import pytest

from context_engine.engine import ContextEngine
from context_engine.models import Chunk, DeleteInput, IngestInput, RetrieveScope
from context_engine.retrieval import as_langchain_retriever
from context_engine.retrieval import chroma_store as chroma_store_module
from context_engine.retrieval.base import in_scope, source_matches
from context_engine.retrieval.chroma_store import ChromaVectorStore
from context_engine.retrieval.memory_store import InMemoryVectorStore, cosine_similarity


def _chunk(source_id: str, index: int, embedding: list[float], document_id: str = "doc-1") -> Chunk:
    return Chunk(
        id=f"{source_id}#{index}",
        document_id=document_id,
        source_id=source_id,
        index=index,
        content=f"{source_id} chunk {index}",
        token_count=3,
        metadata={"extractor": "text", "page_range": [1, 2]},
        embedding=embedding,
    )


# ── Helpers ─────────────────────────────────────────────────────────────


class TestScopeHelpers:
    def test_in_scope_is_prefix(self) -> None:
        assert in_scope("docs/a", RetrieveScope(source_id="docs/"))
        assert not in_scope("blog/a", RetrieveScope(source_id="docs/"))
        assert in_scope("anything", None)

    def test_source_matches(self) -> None:
        assert source_matches("docs/a", DeleteInput(source_id="docs/a"))
        assert not source_matches("docs/ab", DeleteInput(source_id="docs/a"))
        assert source_matches("docs/ab", DeleteInput(source_id_prefix="docs/a"))

    def test_cosine_similarity(self) -> None:
        assert cosine_similarity([1.0, 0.0], [1.0, 0.0]) == pytest.approx(1.0)
        assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
        assert cosine_similarity([0.0, 0.0], [1.0, 0.0]) == 0.0


# ── In-memory store ─────────────────────────────────────────────────────


class TestInMemoryQuery:
    @pytest.mark.asyncio
    async def test_query_orders_by_similarity(self) -> None:
        store = InMemoryVectorStore()
        await store.upsert([_chunk("a", 0, [1.0, 0.0]), _chunk("a", 1, [0.0, 1.0])])

        hits = await store.query([0.9, 0.1], top_k=2)

        assert [h.index for h in hits] == [0, 1]
        assert hits[0].score > hits[1].score

    @pytest.mark.asyncio
    async def test_prefix_delete(self) -> None:
        store = InMemoryVectorStore()
        for source in ("docs/a", "docs/b", "blog/a"):
            await store.upsert([_chunk(source, 0, [1.0, 0.0])])

        await store.delete(DeleteInput(source_id_prefix="docs/"))

        hits = await store.query([1.0, 0.0], top_k=10)
        assert [h.source_id for h in hits] == ["blog/a"]


# ── Chroma store (in-process ephemeral client) ──────────────────────────


class RejectingWrites:
    """Chroma collection wrapper whose writes fail, as when the server drops out."""

    def __init__(self, collection) -> None:
        self._collection = collection

    def upsert(self, **kwargs) -> None:
        raise RuntimeError("chroma unavailable")

    def add(self, **kwargs) -> None:
        raise RuntimeError("chroma unavailable")

    def __getattr__(self, name: str):
        return getattr(self._collection, name)


@pytest.fixture()
def chroma_store() -> ChromaVectorStore:
    return ChromaVectorStore(f"test-{uuid4().hex[:8]}", client=chromadb.EphemeralClient())


class TestChromaStore:
    @pytest.mark.asyncio
    async def test_round_trip_keeps_metadata(self, chroma_store: ChromaVectorStore) -> None:
        await chroma_store.upsert([_chunk("docs/a", 0, [1.0, 0.0, 0.0])])

        hits = await chroma_store.query([1.0, 0.0, 0.0], top_k=1)

        assert hits[0].id == "docs/a#0"
        assert hits[0].metadata == {"extractor": "text", "page_range": [1, 2]}
        assert hits[0].score == pytest.approx(1.0)

    @pytest.mark.asyncio
    async def test_upsert_replaces_and_keeps_document_id(self, chroma_store: ChromaVectorStore) -> None:
        await chroma_store.upsert([_chunk("docs/a", 0, [1.0, 0.0, 0.0]), _chunk("docs/a", 1, [0.0, 1.0, 0.0])])

        result = await chroma_store.upsert([_chunk("docs/a", 0, [0.0, 0.0, 1.0], document_id="doc-2")])

        assert result.document_id == "doc-1"
        hits = await chroma_store.query([0.0, 0.0, 1.0], top_k=5)
        assert [h.id for h in hits] == ["docs/a#0"]
        assert hits[0].document_id == "doc-1"

    @pytest.mark.asyncio
    async def test_scope_and_prefix_delete(self, chroma_store: ChromaVectorStore) -> None:
        for source in ("docs/a", "docs/b", "blog/a"):
            await chroma_store.upsert([_chunk(source, 0, [1.0, 0.0, 0.0])])

        scoped = await chroma_store.query([1.0, 0.0, 0.0], top_k=5, scope=RetrieveScope(source_id="docs/"))
        assert sorted(h.source_id for h in scoped) == ["docs/a", "docs/b"]
        assert await chroma_store.query([1.0, 0.0, 0.0], top_k=5, scope=RetrieveScope(source_id="nope/")) == []

        await chroma_store.delete(DeleteInput(source_id_prefix="docs/"))
        remaining = await chroma_store.query([1.0, 0.0, 0.0], top_k=5)
        assert [h.source_id for h in remaining] == ["blog/a"]

    @pytest.mark.asyncio
    async def test_failed_replace_keeps_previous_chunks(
        self, chroma_store: ChromaVectorStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        await chroma_store.upsert([_chunk("s", 0, [1.0, 0.0, 0.0])])
        collection = chroma_store._collection
        monkeypatch.setattr(chroma_store, "_collection", RejectingWrites(collection))

        with pytest.raises(RuntimeError, match="unavailable"):
            await chroma_store.upsert([_chunk("s", 1, [0.0, 1.0, 0.0], document_id="doc-2")])

        monkeypatch.setattr(chroma_store, "_collection", collection)
        hits = await chroma_store.query([1.0, 0.0, 0.0], top_k=5)
        assert [h.id for h in hits] == ["s#0"]

    @pytest.mark.asyncio
    async def test_prefix_scope_spans_several_pages(
        self, chroma_store: ChromaVectorStore, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(chroma_store_module, "SOURCE_SCAN_PAGE_SIZE", 2)
        for source in ("docs/a", "docs/b", "docs/c", "blog/a", "docs/d"):
            await chroma_store.upsert([_chunk(source, 0, [1.0, 0.0, 0.0])])

        scoped = await chroma_store.query([1.0, 0.0, 0.0], top_k=10, scope=RetrieveScope(source_id="docs/"))

        assert sorted(h.source_id for h in scoped) == ["docs/a", "docs/b", "docs/c", "docs/d"]

    @pytest.mark.asyncio
    async def test_health_check(self, chroma_store: ChromaVectorStore) -> None:
        assert await chroma_store.health_check() is True


# ── LangChain adapter ───────────────────────────────────────────────────


class TestLangChainRetriever:
    @pytest.mark.asyncio
    async def test_documents_carry_chunk_metadata(self, make_engine: Callable[..., ContextEngine]) -> None:
        engine = make_engine()
        await engine.ingest(IngestInput(source_id="docs/a", content="First part.\n\nSecond part."))
        await engine.ingest(IngestInput(source_id="blog/b", content="Unrelated post."))

        retriever = as_langchain_retriever(engine, top_k=5, source_id="docs/")
        docs = await retriever.ainvoke("Second part.")

        assert {d.metadata["source_id"] for d in docs} == {"docs/a"}
        assert {d.page_content for d in docs} == {"First part.", "Second part."}
        assert all("score" in d.metadata for d in docs)
