"""The :class:`ContextEngine` façade.

Usage::

    from context_engine import ContextEngine, ContextEngineConfig, IngestInput, RetrieveInput
    from context_engine.embedding import HuggingFaceEmbeddingProvider
    from context_engine.retrieval import InMemoryVectorStore

    engine = ContextEngine(
        ContextEngineConfig(embedding=HuggingFaceEmbeddingProvider(), store=InMemoryVectorStore())
    )
    await engine.ingest(IngestInput(source_id="docs:intro", content=text))
    result = await engine.retrieve(RetrieveInput(query="What is a chunk?"))
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from context_engine.config import settings
from context_engine.embedding.base import EmbeddingProviderBase
from context_engine.errors import ConfigurationError
from context_engine.events import DebugEvent, EventEmitter, EventObserver, OpScope, new_id
from context_engine.extractors import AssetExtractor, default_extractors
from context_engine.ingestion import pipeline
from context_engine.ingestion.asset_config import (
    AssetProcessingConfig,
    EmbeddingProcessingConfig,
    StorageConfig,
    merge_config,
)
from context_engine.ingestion.chunker import Chunker, ChunkingConfig, ChunkingOptions, resolve_chunker
from context_engine.models import (
    DeleteInput,
    IngestInput,
    IngestPlanResult,
    IngestResult,
    RerankResult,
    RetrieveInput,
    RetrieveResult,
)
from context_engine.retrieval import retriever
from context_engine.retrieval.base import VectorStoreBase
from context_engine.retrieval.reranker import RerankerBase, RerankInput, rerank

logger = logging.getLogger(__name__)


@dataclass
class ContextEngineConfig:
    """Everything a :class:`ContextEngine` is built from.

    Only ``embedding`` and ``store`` are required.  Partial ``dict``
    overrides are accepted for the typed sub-configs and deep-merged over
    their defaults.

    Attributes
    ----------
    embedding:
        Embedding provider.
    store:
        Vector store backend.
    chunker:
        A chunker callable; takes precedence over ``chunking``.
    chunking:
        Chunking method resolved through the chunker registry.
    chunking_options:
        Default chunk size / overlap / minimum, overridable per ingest.
    id_generator:
        Produces document and chunk ids.
    extractors:
        Asset extractors in fallback order; ``None`` installs
        :func:`~context_engine.extractors.default_extractors`.
    reranker:
        Used by :meth:`ContextEngine.rerank`.
    on_event:
        Observer receiving every :class:`~context_engine.events.DebugEvent`.
    """

    embedding: EmbeddingProviderBase
    store: VectorStoreBase
    chunker: Chunker | None = None
    chunking: ChunkingConfig | None = None
    chunking_options: ChunkingOptions | dict[str, Any] | None = None
    id_generator: Callable[[], str] = new_id
    extractors: list[AssetExtractor] | None = None
    reranker: RerankerBase | None = None
    embedding_processing: EmbeddingProcessingConfig | dict[str, Any] | None = None
    storage: StorageConfig | dict[str, Any] | None = None
    asset_processing: AssetProcessingConfig | dict[str, Any] | None = None
    default_top_k: int = field(default_factory=lambda: settings.default_top_k)
    on_event: EventObserver | None = None
    debug: bool = field(default_factory=lambda: settings.debug)


class ContextEngine:
    """Ingest, retrieve, rerank and delete chunks of source documents."""

    def __init__(self, config: ContextEngineConfig) -> None:
        self.embedding = config.embedding
        self.store = config.store
        self.chunker: Chunker = config.chunker or resolve_chunker(config.chunking)
        self.chunking_options = (
            config.chunking_options
            if isinstance(config.chunking_options, ChunkingOptions)
            else merge_config(ChunkingOptions(), config.chunking_options)
        )
        self.id_generator = config.id_generator
        self.extractors = list(config.extractors) if config.extractors is not None else default_extractors()
        self.reranker = config.reranker
        self.embedding_processing = merge_config(EmbeddingProcessingConfig(), config.embedding_processing)
        self.storage = merge_config(StorageConfig(), config.storage)
        self.asset_processing = merge_config(AssetProcessingConfig(), config.asset_processing)
        self.default_top_k = config.default_top_k
        self.emitter = EventEmitter(
            config.on_event,
            buffer_size=settings.debug_buffer_size if config.debug else 0,
        )
        logger.debug(
            "ContextEngine ready: embedding=%s store=%s extractors=%s",
            self.embedding.name,
            self.store.name,
            [e.name for e in self.extractors],
        )

    # -- public API -----------------------------------------------------------

    async def ingest(self, inp: IngestInput) -> IngestResult:
        """Chunk, embed and store *inp*, replacing any prior chunks of its ``source_id``.

        Raises
        ------
        IngestError
            A warning resolved to ``fail`` under the asset-processing policy.
        EmbeddingError
            The embedding provider failed or broke its contract.
        """
        return await pipeline.ingest(self, inp)

    def plan_ingest(self, inp: IngestInput) -> IngestPlanResult:
        """Dry run: how each asset would be routed.  No network calls."""
        return pipeline.plan_ingest(self, inp)

    async def retrieve(self, inp: RetrieveInput) -> RetrieveResult:
        return await retriever.retrieve(self, inp)

    async def rerank(self, inp: RerankInput) -> RerankResult:
        """Reorder retrieved candidates with the configured reranker."""
        return await rerank(self.reranker, inp, scope=OpScope(self.emitter, "rerank"))

    async def delete(self, inp: DeleteInput) -> None:
        """Delete by exact ``source_id`` or by ``source_id_prefix`` (exactly one)."""
        if (inp.source_id is None) == (inp.source_id_prefix is None):
            raise ConfigurationError("delete() requires exactly one of source_id or source_id_prefix")

        scope = OpScope(self.emitter, "delete")
        started = time.perf_counter()
        scope.emit("delete:start", source_id=inp.source_id, source_id_prefix=inp.source_id_prefix)
        await self.store.delete(inp)
        scope.emit("delete:complete", duration_ms=(time.perf_counter() - started) * 1000)

    # -- debugging ------------------------------------------------------------

    def get_debug_events(self) -> list[DebugEvent]:
        """Events buffered since start-up (``debug=True`` only)."""
        return self.emitter.get_buffer()


def create_context_engine(config: ContextEngineConfig) -> ContextEngine:
    return ContextEngine(config)
