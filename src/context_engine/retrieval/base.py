"""Abstract base class for vector-store backends.

Adding a new backend (pgvector, Pinecone, Qdrant …) only requires
subclassing :class:`VectorStoreBase` and implementing the three abstract
methods.  The rest of the engine is backend-agnostic.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from context_engine.models import Chunk, DeleteInput, RetrieveScope, ScoredChunk, UpsertResult


class VectorStoreBase(ABC):
    """Backend-agnostic vector-store interface.

    Parameters
    ----------
    name:
        Logical name of the store / collection / namespace.
    """

    def __init__(self, name: str) -> None:
        self.name = name

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def upsert(self, chunks: list[Chunk]) -> UpsertResult:
        """Replace every stored chunk of the chunks' ``source_id`` with *chunks*.

        All chunks of one call share ``source_id`` and ``document_id`` and
        carry an embedding.  The delete of prior chunks and the insert must
        behave as one unit.  When the source was stored before, the backend
        may keep its existing document id and return it here; the engine
        reports it as ``IngestResult.document_id``.
        """
        ...

    @abstractmethod
    async def query(
        self,
        embedding: list[float],
        *,
        top_k: int,
        scope: RetrieveScope | None = None,
    ) -> list[ScoredChunk]:
        """Return at most *top_k* chunks, most relevant first.

        Parameters
        ----------
        embedding:
            Dense vector for the query.
        top_k:
            Number of results to return.
        scope:
            ``scope.source_id`` restricts results to sources with that prefix.
        """
        ...

    @abstractmethod
    async def delete(self, selector: DeleteInput) -> None:
        """Delete by exact ``source_id`` or by ``source_id_prefix``.

        The engine validates that exactly one selector is set before calling.
        """
        ...

    # -- optional overrides ---------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` when the backend is reachable and ready."""
        return True


def source_matches(source_id: str, selector: DeleteInput) -> bool:
    if selector.source_id is not None:
        return source_id == selector.source_id
    return selector.source_id_prefix is not None and source_id.startswith(selector.source_id_prefix)


def in_scope(source_id: str, scope: RetrieveScope | None) -> bool:
    return scope is None or not scope.source_id or source_id.startswith(scope.source_id)
