"""Embedding orchestration for prepared chunks.

Text units go through the provider's batch API when it has one (batches of
``batch_size``), otherwise one call per unit.  Image units are always
embedded one at a time.  Every path runs through the same bounded worker
pool, so at most ``concurrency`` provider calls are in flight.

Any provider failure, timeout, or contract violation (wrong vector count,
missing vector) raises :class:`~context_engine.errors.EmbeddingError`;
there is no partial embedding state.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import TypeVar

from context_engine.embedding.base import EmbeddingInput, EmbeddingProviderBase, ImageEmbeddingInput
from context_engine.errors import ConfigurationError, EmbeddingError
from context_engine.events import OpScope
from context_engine.ingestion.asset_config import EmbeddingProcessingConfig
from context_engine.ingestion.pool import map_bounded
from context_engine.models import Chunk

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class TextUnit:
    text: str


@dataclass(frozen=True)
class ImageUnit:
    data: bytes | str
    media_type: str | None = None
    asset_id: str | None = None


EmbedUnit = TextUnit | ImageUnit


@dataclass(frozen=True)
class PreparedChunk:
    """A chunk (without embedding yet) and what to embed for it."""

    chunk: Chunk
    unit: EmbedUnit


def _wrong_unit(p: PreparedChunk, expected: str) -> EmbeddingError:
    return EmbeddingError(f"Chunk {p.chunk.id} carries a {type(p.unit).__name__}, expected {expected}")


def _text_input(p: PreparedChunk) -> EmbeddingInput:
    if not isinstance(p.unit, TextUnit):
        raise _wrong_unit(p, "TextUnit")
    return EmbeddingInput(
        text=p.unit.text,
        metadata=p.chunk.metadata,
        position=p.chunk.index,
        source_id=p.chunk.source_id,
        document_id=p.chunk.document_id,
    )


def _image_input(p: PreparedChunk) -> ImageEmbeddingInput:
    if not isinstance(p.unit, ImageUnit):
        raise _wrong_unit(p, "ImageUnit")
    return ImageEmbeddingInput(
        data=p.unit.data,
        media_type=p.unit.media_type,
        metadata=p.chunk.metadata,
        position=p.chunk.index,
        source_id=p.chunk.source_id,
        document_id=p.chunk.document_id,
        asset_id=p.unit.asset_id,
    )


class EmbeddingOrchestrator:
    """Turn prepared chunks into vectors under concurrency / batch bounds.

    Parameters
    ----------
    provider:
        The embedding backend.
    config:
        ``concurrency``, ``batch_size`` and optional per-call ``timeout_ms``.
    scope:
        Event scope of the running ingest, for per-batch progress events.
    """

    def __init__(
        self,
        provider: EmbeddingProviderBase,
        config: EmbeddingProcessingConfig,
        *,
        scope: OpScope | None = None,
    ) -> None:
        self.provider = provider
        self.config = config
        self.scope = scope

    async def embed(self, prepared: list[PreparedChunk]) -> list[list[float]]:
        """Return one vector per prepared chunk, aligned with the input order."""
        text_positions: list[int] = []
        image_positions: list[int] = []
        for i, p in enumerate(prepared):
            if isinstance(p.unit, TextUnit):
                text_positions.append(i)
            elif isinstance(p.unit, ImageUnit):
                image_positions.append(i)
            else:
                raise _wrong_unit(p, "TextUnit or ImageUnit")

        if image_positions and not self.provider.supports_images:
            raise ConfigurationError(
                f"Image embedding requested but provider {self.provider.name!r} "
                "does not implement embed_image()"
            )

        vectors: list[list[float] | None] = [None] * len(prepared)

        if text_positions:
            if self.provider.supports_batch:
                await self._embed_text_batched(prepared, text_positions, vectors)
            else:
                await self._embed_text_single(prepared, text_positions, vectors)

        if image_positions:
            await self._embed_images(prepared, image_positions, vectors)

        missing = [i for i, v in enumerate(vectors) if v is None]
        if missing:
            raise EmbeddingError(f"Missing embeddings for chunk positions {missing}")
        return vectors  # type: ignore[return-value]

    # -- paths ----------------------------------------------------------------

    async def _embed_text_batched(
        self,
        prepared: list[PreparedChunk],
        positions: list[int],
        vectors: list[list[float] | None],
    ) -> None:
        size = self.config.batch_size
        batches = [positions[i : i + size] for i in range(0, len(positions), size)]

        async def run(batch_index: int, batch: list[int]) -> None:
            inputs = [_text_input(prepared[i]) for i in batch]
            started = time.perf_counter()
            result = await self._call(self.provider.embed_many(inputs))
            duration_ms = (time.perf_counter() - started) * 1000

            if len(result) != len(batch):
                raise EmbeddingError(
                    f"embed_many() returned {len(result)} embeddings for a batch of {len(batch)}"
                )
            for position, vector in zip(batch, result):
                vectors[position] = vector

            logger.debug("Embedded batch %d (%d items) in %.1fms", batch_index, len(batch), duration_ms)
            if self.scope:
                self.scope.child(
                    "ingest:embedding-batch",
                    batch_index=batch_index,
                    batch_size=len(batch),
                    duration_ms=duration_ms,
                )

        await map_bounded(batches, run, limit=self.config.concurrency)

    async def _embed_text_single(
        self,
        prepared: list[PreparedChunk],
        positions: list[int],
        vectors: list[list[float] | None],
    ) -> None:
        async def run(_: int, position: int) -> None:
            vectors[position] = await self._call(self.provider.embed(_text_input(prepared[position])))

        await map_bounded(positions, run, limit=self.config.concurrency)

    async def _embed_images(
        self,
        prepared: list[PreparedChunk],
        positions: list[int],
        vectors: list[list[float] | None],
    ) -> None:
        async def run(_: int, position: int) -> None:
            vectors[position] = await self._call(self.provider.embed_image(_image_input(prepared[position])))

        await map_bounded(positions, run, limit=self.config.concurrency)

    # -- helpers --------------------------------------------------------------

    async def _call(self, call: Awaitable[T]) -> T:
        timeout = self.config.timeout_ms / 1000 if self.config.timeout_ms else None
        try:
            return await asyncio.wait_for(call, timeout)
        except EmbeddingError:
            raise
        except TimeoutError as exc:
            raise EmbeddingError(f"Embedding call timed out after {self.config.timeout_ms}ms") from exc
        except Exception as exc:
            raise EmbeddingError(f"Embedding provider {self.provider.name!r} failed: {exc}") from exc
