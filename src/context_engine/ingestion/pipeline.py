"""The ``ingest`` and ``plan_ingest`` sequences.

``ingest``: resolve per-call config → chunk the base text → route assets
(bounded concurrency) → assign contiguous indexes → embed → replace the
source's chunks in the store.  Nothing reaches the store unless every
step before it succeeded.
"""

from __future__ import annotations

import logging
import time
from typing import TYPE_CHECKING

from context_engine.events import OpScope
from context_engine.extractors.base import ExtractorContext
from context_engine.ingestion.asset_config import AssetProcessingConfig, merge_config
from context_engine.ingestion.chunker import ChunkingOptions, resolve_chunking_options
from context_engine.ingestion.embedder import EmbeddingOrchestrator, PreparedChunk, TextUnit
from context_engine.ingestion.pool import map_bounded
from context_engine.ingestion.router import AssetOutcome, AssetRouter, ChunkDraft
from context_engine.models import (
    AssetInput,
    Chunk,
    DeleteInput,
    IngestDurations,
    IngestInput,
    IngestPlanResult,
    IngestResult,
    IngestWarning,
)

if TYPE_CHECKING:
    from context_engine.engine import ContextEngine

logger = logging.getLogger(__name__)


def _elapsed_ms(since: float) -> float:
    return (time.perf_counter() - since) * 1000


def _resolve(engine: ContextEngine, inp: IngestInput) -> tuple[AssetProcessingConfig, ChunkingOptions]:
    return (
        merge_config(engine.asset_processing, inp.asset_processing),
        resolve_chunking_options(engine.chunking_options, inp.chunking),
    )


def _router(
    engine: ContextEngine,
    inp: IngestInput,
    asset_config: AssetProcessingConfig,
    options: ChunkingOptions,
    document_id: str,
    scope: OpScope | None,
) -> AssetRouter:
    ctx = ExtractorContext(
        asset_processing=asset_config,
        source_id=inp.source_id,
        document_id=document_id,
        metadata=inp.metadata,
    )
    return AssetRouter(engine.extractors, engine.embedding, engine.chunker, options, ctx, scope)


async def ingest(engine: ContextEngine, inp: IngestInput) -> IngestResult:
    """Chunk, embed and store one document with its assets."""
    scope = OpScope(engine.emitter, "ingest")
    started = time.perf_counter()
    scope.emit(
        "ingest:start",
        source_id=inp.source_id,
        content_length=len(inp.content),
        asset_count=len(inp.assets),
    )

    try:
        asset_config, options = _resolve(engine, inp)
        document_id = engine.id_generator()

        # -- chunking + asset routing ------------------------------------------
        chunking_started = time.perf_counter()
        drafts = [
            ChunkDraft(
                content=piece.content,
                token_count=piece.token_count,
                metadata=dict(inp.metadata),
                unit=TextUnit(piece.content),
            )
            for piece in engine.chunker(inp.content, options)
        ]

        router = _router(engine, inp, asset_config, options, document_id, scope)

        async def route(_: int, asset: AssetInput) -> AssetOutcome:
            return await router.process(asset)

        outcomes = await map_bounded(inp.assets, route, limit=asset_config.concurrency)
        warnings: list[IngestWarning] = []
        for outcome in outcomes:
            drafts.extend(outcome.drafts)
            warnings.extend(outcome.warnings)

        storage = engine.storage
        prepared = [
            PreparedChunk(
                chunk=Chunk(
                    id=engine.id_generator(),
                    document_id=document_id,
                    source_id=inp.source_id,
                    index=index,
                    content=draft.content if storage.store_chunk_content else "",
                    token_count=draft.token_count,
                    metadata=draft.metadata,
                    document_content=inp.content if storage.store_document_content else None,
                ),
                unit=draft.unit,
            )
            for index, draft in enumerate(drafts)
        ]
        chunking_ms = _elapsed_ms(chunking_started)
        scope.emit("ingest:chunking-complete", chunk_count=len(prepared), warning_count=len(warnings), duration_ms=chunking_ms)

        # -- embedding -----------------------------------------------------------
        embedding_started = time.perf_counter()
        scope.emit(
            "ingest:embedding-start",
            chunk_count=len(prepared),
            batch_size=engine.embedding_processing.batch_size,
            concurrency=engine.embedding_processing.concurrency,
        )
        orchestrator = EmbeddingOrchestrator(engine.embedding, engine.embedding_processing, scope=scope)
        vectors = await orchestrator.embed(prepared) if prepared else []
        chunks = [p.chunk.model_copy(update={"embedding": v}) for p, v in zip(prepared, vectors)]
        embedding_ms = _elapsed_ms(embedding_started)
        scope.emit("ingest:embedding-complete", embedding_count=len(vectors), duration_ms=embedding_ms)

        # -- storage -------------------------------------------------------------
        storage_started = time.perf_counter()
        if chunks:
            stored = await engine.store.upsert(chunks)
            document_id = stored.document_id
        else:
            # Re-ingesting a source as empty still replaces what was there.
            await engine.store.delete(DeleteInput(source_id=inp.source_id))
        storage_ms = _elapsed_ms(storage_started)
        scope.emit("ingest:storage-complete", document_id=document_id, chunk_count=len(chunks), duration_ms=storage_ms)

    except Exception as exc:
        scope.emit("ingest:error", source_id=inp.source_id, error=str(exc), error_type=type(exc).__name__)
        raise

    total_ms = _elapsed_ms(started)
    scope.emit("ingest:complete", document_id=document_id, chunk_count=len(chunks), warning_count=len(warnings), total_ms=total_ms)
    logger.info(
        "Ingested %s: %d chunks, %d warnings in %.1fms",
        inp.source_id,
        len(chunks),
        len(warnings),
        total_ms,
    )

    return IngestResult(
        document_id=document_id,
        chunk_count=len(chunks),
        embedding_model=engine.embedding.name,
        warnings=warnings,
        durations=IngestDurations(
            total_ms=total_ms,
            chunking_ms=chunking_ms,
            embedding_ms=embedding_ms,
            storage_ms=storage_ms,
        ),
    )


def plan_ingest(engine: ContextEngine, inp: IngestInput) -> IngestPlanResult:
    """Classify every asset as ``will_process`` / ``will_skip`` without fetching or extracting."""
    asset_config, options = _resolve(engine, inp)
    router = _router(engine, inp, asset_config, options, document_id="", scope=None)

    result = IngestPlanResult(source_id=inp.source_id)
    for asset in inp.assets:
        plan, warning = router.plan(asset)
        result.assets.append(plan)
        if warning is not None:
            result.warnings.append(warning)
    return result
