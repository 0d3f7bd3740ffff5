"""Unit tests for the ContextEngine façade: ingest, retrieve, delete, events."""

from __future__ import annotations

from collections.abc import Callable

import pytest
from conftest import FakeBatchEmbedder, FakeEmbedder, whole_text_chunker

from context_engine import create_context_engine, get_chunk_asset_ref, is_asset_chunk
from context_engine.engine import ContextEngine, ContextEngineConfig
from context_engine.errors import ConfigurationError, EmbeddingError, UnsupportedAssetError
from context_engine.extractors.base import CallableExtractor, ExtractedTextItem, ExtractionResult
from context_engine.models import (
    AssetBytes,
    AssetInput,
    Chunk,
    DeleteInput,
    IngestInput,
    RetrieveInput,
    RetrieveScope,
    UpsertResult,
)
from context_engine.retrieval.memory_store import InMemoryVectorStore

TWO_PARAGRAPHS = "Alpha paragraph about storage.\n\nBeta paragraph about retrieval."


def _text_extractor(kind: str, text: str) -> CallableExtractor:
    async def extract(asset, ctx) -> ExtractionResult:
        return ExtractionResult(texts=[ExtractedTextItem(label="fulltext", content=text)])

    return CallableExtractor(f"{kind}:fake", supports=lambda asset, ctx: asset.kind == kind, extract=extract)


# ── Ingest ─────────────────────────────────────────────────────────────


class TestIngest:
    @pytest.mark.asyncio
    async def test_one_chunk_scenario(self, store: InMemoryVectorStore) -> None:
        engine = create_context_engine(
            ContextEngineConfig(
                embedding=FakeEmbedder([0.1, 0.2, 0.3]),
                store=store,
                chunker=whole_text_chunker,
                extractors=[],
            )
        )
        result = await engine.ingest(IngestInput(source_id="docs:a", content="hello world"))

        assert result.chunk_count == 1
        assert result.warnings == []
        assert result.embedding_model == "fake-embedder"
        assert store.chunks_for("docs:a")[0].embedding == [0.1, 0.2, 0.3]

    @pytest.mark.asyncio
    async def test_indexes_are_contiguous_across_text_and_assets(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore
    ) -> None:
        engine = make_engine(
            extractors=[_text_extractor("pdf", "Pdf one.\n\nPdf two."), _text_extractor("file", "File text.")],
        )
        assets = [
            AssetInput(asset_id="p", kind="pdf", data=AssetBytes(data=b"%PDF")),
            AssetInput(asset_id="f", kind="file", data=AssetBytes(data=b"x", filename="a.txt")),
        ]

        result = await engine.ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS, assets=assets))

        chunks = store.chunks_for("s")
        assert result.chunk_count == 5
        assert [c.index for c in chunks] == [0, 1, 2, 3, 4]
        assert [c.metadata.get("asset_id") for c in chunks] == [None, None, "p", "p", "f"]
        assert len({c.id for c in chunks}) == 5

    @pytest.mark.asyncio
    async def test_reingest_replaces_previous_chunks(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore
    ) -> None:
        engine = make_engine()
        first = await engine.ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS))
        second = await engine.ingest(IngestInput(source_id="s", content="Only gamma now."))

        chunks = store.chunks_for("s")
        assert [c.content for c in chunks] == ["Only gamma now."]
        # The store keeps the canonical document id of the source.
        assert second.document_id == first.document_id
        assert all(c.document_id == first.document_id for c in chunks)

        result = await engine.retrieve(RetrieveInput(query="alpha storage", top_k=10))
        assert [c.content for c in result.chunks] == ["Only gamma now."]

    @pytest.mark.asyncio
    async def test_result_reports_the_id_the_store_returns(self, make_engine: Callable[..., ContextEngine]) -> None:
        class CanonicalIdStore(InMemoryVectorStore):
            async def upsert(self, chunks: list[Chunk]) -> UpsertResult:
                await super().upsert(chunks)
                return UpsertResult(document_id="canonical-7")

        store = CanonicalIdStore()
        engine = make_engine(store=store)

        result = await engine.ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS))

        assert result.document_id == "canonical-7"
        assert all(c.document_id != "canonical-7" for c in store.chunks_for("s"))

    @pytest.mark.asyncio
    async def test_empty_reingest_clears_source(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore
    ) -> None:
        engine = make_engine()
        await engine.ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS))
        result = await engine.ingest(IngestInput(source_id="s", content="   "))
        assert result.chunk_count == 0
        assert store.chunks_for("s") == []

    @pytest.mark.asyncio
    async def test_storage_toggles(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore, embedder
    ) -> None:
        engine = make_engine(storage={"store_chunk_content": False, "store_document_content": False})
        await engine.ingest(IngestInput(source_id="s", content="Secret text."))

        chunk = store.chunks_for("s")[0]
        assert chunk.content == ""
        assert chunk.document_content is None
        assert chunk.token_count == 2
        # The embedding still saw the real text.
        assert embedder.calls == ["Secret text."]

    @pytest.mark.asyncio
    async def test_document_content_stored_by_default(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore
    ) -> None:
        await make_engine().ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS))
        assert all(c.document_content == TWO_PARAGRAPHS for c in store.chunks_for("s"))

    @pytest.mark.asyncio
    async def test_embedding_failure_writes_nothing(self, store: InMemoryVectorStore) -> None:
        class Failing(FakeBatchEmbedder):
            async def embed_many(self, inputs):
                return []

        engine = create_context_engine(
            ContextEngineConfig(embedding=Failing(), store=store, chunker=whole_text_chunker, extractors=[])
        )
        with pytest.raises(EmbeddingError):
            await engine.ingest(IngestInput(source_id="s", content="text"))
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_batched_provider_uses_embedding_processing(self, store: InMemoryVectorStore) -> None:
        provider = FakeBatchEmbedder()
        engine = ContextEngine(
            ContextEngineConfig(
                embedding=provider,
                store=store,
                chunker=lambda content, options: [
                    *whole_text_chunker(content, options),
                    *whole_text_chunker(content.upper(), options),
                    *whole_text_chunker(content.lower(), options),
                ],
                extractors=[],
                embedding_processing={"batch_size": 2},
            )
        )
        await engine.ingest(IngestInput(source_id="s", content="Mixed Case"))
        assert sorted(provider.batches) == [1, 2]

    @pytest.mark.asyncio
    async def test_per_call_chunking_override(self, store: InMemoryVectorStore) -> None:
        seen = []

        def chunker(content, options):
            seen.append(options.chunk_size)
            return whole_text_chunker(content, options)

        engine = ContextEngine(
            ContextEngineConfig(embedding=FakeEmbedder(), store=store, chunker=chunker, extractors=[])
        )
        await engine.ingest(IngestInput(source_id="s", content="text", chunking={"chunk_size": 64, "chunk_overlap": 8}))
        assert seen == [64]
        assert engine.chunking_options.chunk_size == 512


# ── Retrieve ───────────────────────────────────────────────────────────


class TestRetrieve:
    @pytest.mark.asyncio
    async def test_scope_is_a_prefix(self, make_engine: Callable[..., ContextEngine]) -> None:
        engine = make_engine()
        await engine.ingest(IngestInput(source_id="docs:a", content="shared words here"))
        await engine.ingest(IngestInput(source_id="docs:b", content="shared words here"))
        await engine.ingest(IngestInput(source_id="blog:c", content="shared words here"))

        result = await engine.retrieve(
            RetrieveInput(query="shared words", top_k=10, scope=RetrieveScope(source_id="docs:"))
        )
        assert sorted(c.source_id for c in result.chunks) == ["docs:a", "docs:b"]

    @pytest.mark.asyncio
    async def test_default_top_k_and_ordering(self, make_engine: Callable[..., ContextEngine]) -> None:
        engine = make_engine()
        content = "\n\n".join(f"paragraph number {i} " + "word " * i for i in range(12))
        await engine.ingest(IngestInput(source_id="s", content=content))

        result = await engine.retrieve(RetrieveInput(query="paragraph number"))
        assert len(result.chunks) == 8
        scores = [c.score for c in result.chunks]
        assert scores == sorted(scores, reverse=True)
        assert result.durations.total_ms >= result.durations.retrieval_ms

    @pytest.mark.asyncio
    async def test_invalid_top_k(self, make_engine: Callable[..., ContextEngine]) -> None:
        with pytest.raises(ConfigurationError):
            await make_engine().retrieve(RetrieveInput(query="q", top_k=0))


# ── Delete ─────────────────────────────────────────────────────────────


class RecordingStore(InMemoryVectorStore):
    def __init__(self) -> None:
        super().__init__()
        self.deletes: list[DeleteInput] = []

    async def delete(self, selector: DeleteInput) -> None:
        self.deletes.append(selector)
        await super().delete(selector)


class TestDelete:
    @pytest.mark.asyncio
    async def test_both_selectors_is_config_error_before_store(self, embedder) -> None:
        store = RecordingStore()
        engine = ContextEngine(ContextEngineConfig(embedding=embedder, store=store, extractors=[]))
        with pytest.raises(ConfigurationError):
            await engine.delete(DeleteInput(source_id="x", source_id_prefix="y"))
        assert store.deletes == []

    @pytest.mark.asyncio
    async def test_neither_selector_is_config_error(self, make_engine: Callable[..., ContextEngine]) -> None:
        with pytest.raises(ConfigurationError):
            await make_engine().delete(DeleteInput())

    @pytest.mark.asyncio
    async def test_exact_and_prefix(
        self, make_engine: Callable[..., ContextEngine], store: InMemoryVectorStore
    ) -> None:
        engine = make_engine()
        for source in ("docs:a", "docs:ab", "docs:b", "blog:a"):
            await engine.ingest(IngestInput(source_id=source, content=f"content of {source}"))

        await engine.delete(DeleteInput(source_id="docs:a"))
        assert store.chunks_for("docs:a") == []
        assert store.chunks_for("docs:ab") != []

        await engine.delete(DeleteInput(source_id_prefix="docs:"))
        assert store.chunks_for("docs:ab") == []
        assert store.chunks_for("docs:b") == []
        assert store.chunks_for("blog:a") != []


# ── Events ─────────────────────────────────────────────────────────────


class TestEvents:
    @pytest.mark.asyncio
    async def test_ingest_lifecycle_events(self, make_engine: Callable[..., ContextEngine]) -> None:
        events = []
        engine = make_engine(on_event=events.append)
        await engine.ingest(IngestInput(source_id="s", content=TWO_PARAGRAPHS))

        types = [e.type for e in events if e.parent_span_id is None]
        assert types == [
            "ingest:start",
            "ingest:chunking-complete",
            "ingest:embedding-start",
            "ingest:embedding-complete",
            "ingest:storage-complete",
            "ingest:complete",
        ]
        assert len({e.op_id for e in events}) == 1
        assert all(e.op_name == "ingest" for e in events)

    @pytest.mark.asyncio
    async def test_failing_observer_never_breaks_ingest(self, make_engine: Callable[..., ContextEngine]) -> None:
        def observer(event) -> None:
            raise RuntimeError("observer bug")

        result = await make_engine(on_event=observer).ingest(IngestInput(source_id="s", content="text"))
        assert result.chunk_count == 1

    @pytest.mark.asyncio
    async def test_error_event_on_failure(self, make_engine: Callable[..., ContextEngine]) -> None:
        events = []
        engine = make_engine(on_event=events.append, asset_processing={"on_unsupported_asset": "fail"})
        asset = AssetInput(asset_id="a", kind="video", data=AssetBytes(data=b"..."))
        with pytest.raises(UnsupportedAssetError):
            await engine.ingest(IngestInput(source_id="s", assets=[asset]))
        assert events[-1].type == "ingest:error"

    @pytest.mark.asyncio
    async def test_retrieve_and_delete_events(self, make_engine: Callable[..., ContextEngine]) -> None:
        events = []
        engine = make_engine(on_event=events.append)
        await engine.retrieve(RetrieveInput(query="q"))
        await engine.delete(DeleteInput(source_id="s"))
        assert [e.type for e in events] == [
            "retrieve:start",
            "retrieve:embedding-complete",
            "retrieve:database-complete",
            "retrieve:complete",
            "delete:start",
            "delete:complete",
        ]

    @pytest.mark.asyncio
    async def test_debug_buffer(self, make_engine: Callable[..., ContextEngine]) -> None:
        engine = make_engine(debug=True)
        await engine.retrieve(RetrieveInput(query="q"))
        assert [e.type for e in engine.get_debug_events()][0] == "retrieve:start"


# ── Asset references ───────────────────────────────────────────────────


class TestAssetRefs:
    def test_asset_chunk_ref(self) -> None:
        chunk = Chunk(
            id="c",
            document_id="d",
            source_id="s",
            index=0,
            content="x",
            token_count=1,
            metadata={"asset_id": "img1", "asset_kind": "image", "extractor": "image:embed"},
        )
        assert is_asset_chunk(chunk)
        ref = get_chunk_asset_ref(chunk)
        assert ref is not None
        assert (ref.asset_id, ref.asset_kind, ref.extractor) == ("img1", "image", "image:embed")

    def test_text_chunk_has_no_ref(self) -> None:
        chunk = Chunk(id="c", document_id="d", source_id="s", index=0, content="x", token_count=1)
        assert not is_asset_chunk(chunk)
        assert get_chunk_asset_ref(chunk) is None


# ── Store contract ─────────────────────────────────────────────────────


class TestInMemoryStore:
    @pytest.mark.asyncio
    async def test_upsert_rejects_mixed_sources(self) -> None:
        store = InMemoryVectorStore()
        chunks = [
            Chunk(id="1", document_id="d", source_id="a", index=0, content="x", token_count=1, embedding=[1.0]),
            Chunk(id="2", document_id="d", source_id="b", index=1, content="y", token_count=1, embedding=[1.0]),
        ]
        with pytest.raises(ValueError):
            await store.upsert(chunks)

    @pytest.mark.asyncio
    async def test_upsert_returns_canonical_id(self) -> None:
        store = InMemoryVectorStore()
        first = Chunk(id="1", document_id="d1", source_id="a", index=0, content="x", token_count=1, embedding=[1.0])
        again = Chunk(id="2", document_id="d2", source_id="a", index=0, content="y", token_count=1, embedding=[1.0])
        assert await store.upsert([first]) == UpsertResult(document_id="d1")
        assert await store.upsert([again]) == UpsertResult(document_id="d1")
        assert store.chunks_for("a")[0].id == "2"
