"""Semantic retrieval: embed the query, ask the store, time both steps.

This module is the retrieval half of :class:`~context_engine.engine.ContextEngine`.
It is intentionally decoupled from LangChain retriever abstractions;
:func:`as_langchain_retriever` adds a thin adapter for LangChain callers.

Usage::

    result = await engine.retrieve(RetrieveInput(query="How does autoscaling work?", top_k=5))
    for chunk in result.chunks:
        print(chunk.score, chunk.source_id, chunk.content[:80])
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import TYPE_CHECKING, Any

from context_engine.embedding.base import EmbeddingInput
from context_engine.errors import ConfigurationError, EmbeddingError
from context_engine.events import OpScope
from context_engine.models import RetrieveDurations, RetrieveInput, RetrieveResult

if TYPE_CHECKING:
    from context_engine.engine import ContextEngine

logger = logging.getLogger(__name__)


async def retrieve(engine: ContextEngine, inp: RetrieveInput) -> RetrieveResult:
    """Run a semantic search over the engine's store.

    ``inp.scope.source_id`` is matched as a prefix, so ``"docs:"`` searches
    every source under that namespace.
    """
    top_k = inp.top_k if inp.top_k is not None else engine.default_top_k
    if top_k < 1:
        raise ConfigurationError(f"top_k must be >= 1, got {top_k}")

    scope = OpScope(engine.emitter, "retrieve")
    started = time.perf_counter()
    scope.emit(
        "retrieve:start",
        query=inp.query,
        top_k=top_k,
        scope=inp.scope.source_id if inp.scope else None,
    )

    embedding_started = time.perf_counter()
    try:
        embedding = await engine.embedding.embed(EmbeddingInput(text=inp.query))
    except Exception as exc:
        raise EmbeddingError(f"Embedding provider {engine.embedding.name!r} failed on query: {exc}") from exc
    embedding_ms = (time.perf_counter() - embedding_started) * 1000
    scope.emit("retrieve:embedding-complete", dimensions=len(embedding), duration_ms=embedding_ms)

    retrieval_started = time.perf_counter()
    chunks = await engine.store.query(embedding, top_k=top_k, scope=inp.scope)
    retrieval_ms = (time.perf_counter() - retrieval_started) * 1000
    scope.emit("retrieve:database-complete", result_count=len(chunks), duration_ms=retrieval_ms)

    total_ms = (time.perf_counter() - started) * 1000
    scope.emit("retrieve:complete", result_count=len(chunks), total_ms=total_ms)
    logger.debug("Retrieved %d chunks in %.1fms", len(chunks), total_ms)

    return RetrieveResult(
        chunks=chunks,
        embedding_model=engine.embedding.name,
        durations=RetrieveDurations(total_ms=total_ms, embedding_ms=embedding_ms, retrieval_ms=retrieval_ms),
    )


def as_langchain_retriever(engine: ContextEngine, top_k: int | None = None, source_id: str | None = None) -> Any:
    """Return a thin LangChain-compatible retriever over *engine*.

    LangChain is imported only here so that the rest of the retrieval
    package has no LangChain dependency.
    """
    from langchain_core.callbacks import AsyncCallbackManagerForRetrieverRun, CallbackManagerForRetrieverRun
    from langchain_core.documents import Document
    from langchain_core.retrievers import BaseRetriever

    from context_engine.models import RetrieveScope

    def to_documents(result: RetrieveResult) -> list[Document]:
        return [
            Document(
                page_content=chunk.content,
                metadata={
                    **chunk.metadata,
                    "chunk_id": chunk.id,
                    "source_id": chunk.source_id,
                    "document_id": chunk.document_id,
                    "index": chunk.index,
                    "score": chunk.score,
                },
            )
            for chunk in result.chunks
        ]

    def build_input(query: str) -> RetrieveInput:
        return RetrieveInput(
            query=query,
            top_k=top_k,
            scope=RetrieveScope(source_id=source_id) if source_id else None,
        )

    class _LCRetriever(BaseRetriever):
        """Adapter that satisfies LangChain's retriever protocol."""

        def _get_relevant_documents(
            self, query: str, *, run_manager: CallbackManagerForRetrieverRun
        ) -> list[Document]:
            return to_documents(asyncio.run(engine.retrieve(build_input(query))))

        async def _aget_relevant_documents(
            self, query: str, *, run_manager: AsyncCallbackManagerForRetrieverRun
        ) -> list[Document]:
            return to_documents(await engine.retrieve(build_input(query)))

    return _LCRetriever()
