"""
Embedding — provider contract and thin adapters over embedding libraries.

Public surface
--------------
- :class:`EmbeddingProviderBase` — subclass to plug in any embedding model.
- :class:`EmbeddingInput`, :class:`ImageEmbeddingInput` — call arguments.
- :class:`HuggingFaceEmbeddingProvider` — sentence-transformers via LangChain (lazy).
"""

from context_engine.embedding.base import EmbeddingInput, EmbeddingProviderBase, ImageEmbeddingInput

__all__ = [
    "EmbeddingInput",
    "EmbeddingProviderBase",
    "HuggingFaceEmbeddingProvider",
    "ImageEmbeddingInput",
]


def __getattr__(name: str):  # noqa: ANN001
    """Lazy-import the HuggingFace adapter to avoid loading torch at import time."""
    if name == "HuggingFaceEmbeddingProvider":
        from context_engine.embedding.huggingface import HuggingFaceEmbeddingProvider

        return HuggingFaceEmbeddingProvider
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
