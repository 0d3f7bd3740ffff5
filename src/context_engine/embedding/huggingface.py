"""Sentence-transformer embeddings through LangChain's HuggingFace wrapper."""

from __future__ import annotations

import asyncio

from langchain_huggingface import HuggingFaceEmbeddings

from context_engine.config import settings
from context_engine.embedding.base import EmbeddingInput, EmbeddingProviderBase


class HuggingFaceEmbeddingProvider(EmbeddingProviderBase):
    """Local sentence-transformer model.

    Encoding is CPU/GPU bound, so calls run in a worker thread to keep the
    event loop responsive.

    Parameters
    ----------
    model_name:
        HuggingFace model id.
    normalize_embeddings:
        Whether to L2-normalise vectors (recommended for cosine similarity).
    """

    def __init__(
        self,
        model_name: str = settings.embedding_model,
        *,
        normalize_embeddings: bool = True,
    ) -> None:
        super().__init__(model_name)
        self._embedder = HuggingFaceEmbeddings(
            model_name=model_name,
            encode_kwargs={"normalize_embeddings": normalize_embeddings},
        )

    async def embed(self, input: EmbeddingInput) -> list[float]:  # noqa: A002
        return await asyncio.to_thread(self._embedder.embed_query, input.text)

    async def embed_many(self, inputs: list[EmbeddingInput]) -> list[list[float]]:
        texts = [i.text for i in inputs]
        return await asyncio.to_thread(self._embedder.embed_documents, texts)
