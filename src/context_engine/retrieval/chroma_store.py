"""Chroma implementation of the vector-store abstraction."""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import chromadb

from context_engine.config import settings
from context_engine.models import Chunk, DeleteInput, RetrieveScope, ScoredChunk, UpsertResult
from context_engine.retrieval.base import VectorStoreBase, in_scope, source_matches

logger = logging.getLogger(__name__)

SOURCE_SCAN_PAGE_SIZE = 500


def _to_chroma_metadata(chunk: Chunk) -> dict[str, Any]:
    """Chroma metadata values must be scalars: nest the chunk metadata as JSON."""
    meta: dict[str, Any] = {
        "source_id": chunk.source_id,
        "document_id": chunk.document_id,
        "index": chunk.index,
        "token_count": chunk.token_count,
        "metadata_json": json.dumps(chunk.metadata, default=str),
    }
    if chunk.document_content is not None:
        meta["document_content"] = chunk.document_content
    return meta


def _from_chroma(chunk_id: str, content: str | None, meta: dict[str, Any], score: float) -> ScoredChunk:
    return ScoredChunk(
        id=chunk_id,
        document_id=meta["document_id"],
        source_id=meta["source_id"],
        index=int(meta["index"]),
        content=content or "",
        token_count=int(meta.get("token_count", 0)),
        metadata=json.loads(meta.get("metadata_json") or "{}"),
        document_content=meta.get("document_content"),
        score=score,
    )


class ChromaVectorStore(VectorStoreBase):
    """Chroma-backed vector store.

    Parameters
    ----------
    collection_name:
        Name of the Chroma collection.
    host:
        Chroma server hostname.
    port:
        Chroma server port.
    client:
        Pre-built Chroma client (e.g. ``chromadb.EphemeralClient()``); when
        given, *host* and *port* are ignored.
    """

    def __init__(
        self,
        collection_name: str = settings.chroma_collection,
        *,
        host: str = settings.chroma_host,
        port: int = settings.chroma_port,
        client: Any | None = None,
    ) -> None:
        super().__init__(collection_name)
        self._client = client if client is not None else chromadb.HttpClient(host=host, port=port)
        self._collection = self._client.get_or_create_collection(collection_name)
        self._lock = asyncio.Lock()

    # -- VectorStoreBase overrides --------------------------------------------

    async def upsert(self, chunks: list[Chunk]) -> UpsertResult:
        if not chunks:
            raise ValueError("upsert() requires at least one chunk")
        async with self._lock:
            return await asyncio.to_thread(self._replace_source, chunks)

    async def query(
        self,
        embedding: list[float],
        *,
        top_k: int,
        scope: RetrieveScope | None = None,
    ) -> list[ScoredChunk]:
        return await asyncio.to_thread(self._query, embedding, top_k, scope)

    async def delete(self, selector: DeleteInput) -> None:
        async with self._lock:
            await asyncio.to_thread(self._delete, selector)

    async def health_check(self) -> bool:
        try:
            await asyncio.to_thread(self._client.heartbeat)
            return True
        except Exception:
            logger.warning("Chroma health-check failed", exc_info=True)
            return False

    # -- internals (blocking) -------------------------------------------------

    def _replace_source(self, chunks: list[Chunk]) -> UpsertResult:
        source_id = chunks[0].source_id
        previous_ids = self._collection.get(where={"source_id": source_id}, include=[])["ids"]
        document_id = chunks[0].document_id
        if previous_ids:
            first = self._collection.get(ids=previous_ids[:1], include=["metadatas"])
            document_id = (first.get("metadatas") or [{}])[0].get("document_id", document_id)

        # Write the new chunks before dropping the old ones: a failed write
        # leaves the previous version of the source intact.
        chunks = [c.model_copy(update={"document_id": document_id}) for c in chunks]
        self._collection.upsert(
            ids=[c.id for c in chunks],
            embeddings=[c.embedding for c in chunks],
            documents=[c.content for c in chunks],
            metadatas=[_to_chroma_metadata(c) for c in chunks],
        )
        new_ids = {c.id for c in chunks}
        stale = [i for i in previous_ids if i not in new_ids]
        if stale:
            self._collection.delete(ids=stale)
        logger.debug("Replaced %s with %d chunks (%d stale removed) in %s", source_id, len(chunks), len(stale), self.name)
        return UpsertResult(document_id=document_id)

    def _source_ids(self) -> set[str]:
        """Distinct source ids, read one page at a time."""
        sources: set[str] = set()
        offset = 0
        while True:
            page = self._collection.get(include=["metadatas"], limit=SOURCE_SCAN_PAGE_SIZE, offset=offset)
            metas = page.get("metadatas") or []
            sources.update(m["source_id"] for m in metas)
            if len(metas) < SOURCE_SCAN_PAGE_SIZE:
                return sources
            offset += SOURCE_SCAN_PAGE_SIZE

    def _query(self, embedding: list[float], top_k: int, scope: RetrieveScope | None) -> list[ScoredChunk]:
        where: dict[str, Any] | None = None
        if scope is not None and scope.source_id:
            # Chroma has no prefix operator: resolve the prefix to concrete sources.
            sources = sorted(s for s in self._source_ids() if in_scope(s, scope))
            if not sources:
                return []
            where = {"source_id": {"$in": sources}}

        results = self._collection.query(
            query_embeddings=[embedding],
            n_results=top_k,
            where=where,
            include=["documents", "metadatas", "distances"],
        )

        ids = results.get("ids", [[]])[0]
        docs = (results.get("documents") or [[]])[0]
        metas = (results.get("metadatas") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]

        # Chroma returns L2 distances; convert to a 0-1 similarity score.
        return [
            _from_chroma(chunk_id, content, meta or {}, 1.0 / (1.0 + dist))
            for chunk_id, content, meta, dist in zip(ids, docs, metas, distances)
        ]

    def _delete(self, selector: DeleteInput) -> None:
        if selector.source_id is not None:
            self._collection.delete(where={"source_id": selector.source_id})
            return
        doomed = sorted(s for s in self._source_ids() if source_matches(s, selector))
        if doomed:
            self._collection.delete(where={"source_id": {"$in": doomed}})
