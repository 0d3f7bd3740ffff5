"""In-process vector store, for tests, notebooks and small local corpora."""

from __future__ import annotations

import asyncio
import logging
import math

from context_engine.models import Chunk, DeleteInput, RetrieveScope, ScoredChunk, UpsertResult
from context_engine.retrieval.base import VectorStoreBase, in_scope, source_matches

logger = logging.getLogger(__name__)


def cosine_similarity(a: list[float], b: list[float]) -> float:
    if len(a) != len(b):
        raise ValueError(f"Embedding dimension mismatch: {len(a)} != {len(b)}")
    dot = sum(x * y for x, y in zip(a, b))
    norm = math.sqrt(sum(x * x for x in a)) * math.sqrt(sum(y * y for y in b))
    return dot / norm if norm else 0.0


class InMemoryVectorStore(VectorStoreBase):
    """Keep chunks in a dict keyed by ``source_id``; brute-force cosine search.

    Replace-by-source is atomic with respect to other coroutines: every
    mutation runs under one :class:`asyncio.Lock`.
    """

    def __init__(self, name: str = "memory") -> None:
        super().__init__(name)
        self._by_source: dict[str, list[Chunk]] = {}
        self._lock = asyncio.Lock()

    # -- VectorStoreBase overrides --------------------------------------------

    async def upsert(self, chunks: list[Chunk]) -> UpsertResult:
        if not chunks:
            raise ValueError("upsert() requires at least one chunk")
        source_id = chunks[0].source_id
        if any(c.source_id != source_id for c in chunks):
            raise ValueError("All chunks of one upsert must share a source_id")

        async with self._lock:
            previous = self._by_source.get(source_id)
            document_id = previous[0].document_id if previous else chunks[0].document_id
            self._by_source[source_id] = [
                c if c.document_id == document_id else c.model_copy(update={"document_id": document_id})
                for c in chunks
            ]

        logger.debug("Stored %d chunks for %s", len(chunks), source_id)
        return UpsertResult(document_id=document_id)

    async def query(
        self,
        embedding: list[float],
        *,
        top_k: int,
        scope: RetrieveScope | None = None,
    ) -> list[ScoredChunk]:
        scored: list[ScoredChunk] = []
        for source_id, chunks in list(self._by_source.items()):
            if not in_scope(source_id, scope):
                continue
            for chunk in chunks:
                if chunk.embedding is None:
                    continue
                score = cosine_similarity(embedding, chunk.embedding)
                scored.append(ScoredChunk(**chunk.model_dump(), score=score))

        scored.sort(key=lambda c: c.score, reverse=True)
        return scored[:top_k]

    async def delete(self, selector: DeleteInput) -> None:
        async with self._lock:
            doomed = [s for s in self._by_source if source_matches(s, selector)]
            for source_id in doomed:
                del self._by_source[source_id]
        logger.debug("Deleted %d sources", len(doomed))

    # -- helpers --------------------------------------------------------------

    def chunks_for(self, source_id: str) -> list[Chunk]:
        """Stored chunks of *source_id*, in index order."""
        return list(self._by_source.get(source_id, []))

    def __len__(self) -> int:
        return sum(len(c) for c in self._by_source.values())
