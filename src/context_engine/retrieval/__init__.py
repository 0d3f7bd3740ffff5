"""
Retrieval — vector stores, semantic search and re-ranking.

The engine only talks to :class:`VectorStoreBase`, so swapping the
backend never touches ingestion or retrieval logic.

Public surface
--------------
- :class:`VectorStoreBase` — abstract backend (subclass for pgvector, Qdrant, etc.).
- :class:`InMemoryVectorStore` — brute-force cosine store for tests and local use.
- :class:`ChromaVectorStore` — Chroma backend (lazy).
- :class:`RerankerBase`, :class:`CustomReranker`, :class:`RerankInput` — reranking.
- :func:`as_langchain_retriever` — LangChain retriever adapter.
"""

from context_engine.retrieval.base import VectorStoreBase
from context_engine.retrieval.memory_store import InMemoryVectorStore
from context_engine.retrieval.reranker import CustomReranker, RerankerBase, RerankInput, RerankOutput
from context_engine.retrieval.retriever import as_langchain_retriever

__all__ = [
    "ChromaVectorStore",
    "CustomReranker",
    "InMemoryVectorStore",
    "RerankInput",
    "RerankOutput",
    "RerankerBase",
    "VectorStoreBase",
    "as_langchain_retriever",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import ChromaVectorStore to avoid pulling in chromadb at import time."""
    if name == "ChromaVectorStore":
        from context_engine.retrieval.chroma_store import ChromaVectorStore

        return ChromaVectorStore
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
