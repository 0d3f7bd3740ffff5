"""Shared pytest configuration, fakes and fixtures."""

from __future__ import annotations

import asyncio
from collections.abc import Callable

import pytest

from context_engine.embedding.base import EmbeddingInput, EmbeddingProviderBase, ImageEmbeddingInput
from context_engine.engine import ContextEngine, ContextEngineConfig
from context_engine.ingestion.chunker import ChunkingOptions
from context_engine.models import ChunkText
from context_engine.retrieval.memory_store import InMemoryVectorStore


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "integration: marks tests requiring external services")


# ── Fakes ───────────────────────────────────────────────────────────────


def word_vector(text: str) -> list[float]:
    """Deterministic 3-d vector: texts sharing words point the same way."""
    words = text.lower().split()
    return [
        1.0 + sum(len(w) for w in words) % 7,
        1.0 + len(words) % 5,
        1.0 + sum(ord(w[0]) for w in words if w) % 11,
    ]


class FakeEmbedder(EmbeddingProviderBase):
    """Single-text provider that records calls and tracks in-flight calls."""

    def __init__(self, vector: list[float] | None = None, *, delay: float = 0.0) -> None:
        super().__init__("fake-embedder", dimensions=3)
        self.vector = vector
        self.delay = delay
        self.calls: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def embed(self, input: EmbeddingInput) -> list[float]:  # noqa: A002
        self.calls.append(input.text)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return list(self.vector) if self.vector else word_vector(input.text)
        finally:
            self.in_flight -= 1


class FakeBatchEmbedder(FakeEmbedder):
    """Adds the batch path; ``batches`` records every batch size."""

    def __init__(self, vector: list[float] | None = None, *, delay: float = 0.0) -> None:
        super().__init__(vector, delay=delay)
        self.batches: list[int] = []

    async def embed_many(self, inputs: list[EmbeddingInput]) -> list[list[float]]:
        self.batches.append(len(inputs))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            return [list(self.vector) if self.vector else word_vector(i.text) for i in inputs]
        finally:
            self.in_flight -= 1


class FakeImageEmbedder(FakeEmbedder):
    """Adds multimodal image embedding."""

    def __init__(self) -> None:
        super().__init__()
        self.images: list[ImageEmbeddingInput] = []

    async def embed_image(self, input: ImageEmbeddingInput) -> list[float]:  # noqa: A002
        self.images.append(input)
        return [0.5, 0.5, 0.5]


def whole_text_chunker(content: str, options: ChunkingOptions) -> list[ChunkText]:
    """One chunk per non-blank input; token count = word count."""
    text = content.strip()
    if not text:
        return []
    return [ChunkText(index=0, content=text, token_count=len(text.split()))]


def paragraph_chunker(content: str, options: ChunkingOptions) -> list[ChunkText]:
    """One chunk per blank-line separated paragraph."""
    paragraphs = [p.strip() for p in content.split("\n\n") if p.strip()]
    return [ChunkText(index=i, content=p, token_count=len(p.split())) for i, p in enumerate(paragraphs)]


# ── Fixtures ────────────────────────────────────────────────────────────


@pytest.fixture()
def embedder() -> FakeEmbedder:
    return FakeEmbedder()


@pytest.fixture()
def store() -> InMemoryVectorStore:
    return InMemoryVectorStore()


@pytest.fixture()
def make_engine(embedder: FakeEmbedder, store: InMemoryVectorStore) -> Callable[..., ContextEngine]:
    """Build an engine over the fake embedder / in-memory store; kwargs override config fields."""

    def factory(**overrides) -> ContextEngine:
        config = {
            "embedding": embedder,
            "store": store,
            "chunker": paragraph_chunker,
            "extractors": [],
            **overrides,
        }
        return ContextEngine(ContextEngineConfig(**config))

    return factory
