"""Abstract base class for embedding providers.

A provider must implement :meth:`EmbeddingProviderBase.embed`.  Overriding
:meth:`~EmbeddingProviderBase.embed_many` enables the batched path and
overriding :meth:`~EmbeddingProviderBase.embed_image` enables multimodal
image embedding; the engine detects both by override.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field

from context_engine.models import Metadata


@dataclass(frozen=True)
class EmbeddingInput:
    """One text to embed, with the chunk context it came from."""

    text: str
    metadata: Metadata = field(default_factory=dict)
    position: int = 0
    source_id: str = ""
    document_id: str = ""


@dataclass(frozen=True)
class ImageEmbeddingInput:
    """One image to embed.  ``data`` is raw bytes or an https URL."""

    data: bytes | str
    media_type: str | None = None
    metadata: Metadata = field(default_factory=dict)
    position: int = 0
    source_id: str = ""
    document_id: str = ""
    asset_id: str | None = None


class EmbeddingProviderBase(ABC):
    """Backend-agnostic embedding interface.

    Parameters
    ----------
    name:
        Model identifier reported in ingest / retrieve results.
    dimensions:
        Vector size, when known up front.
    """

    def __init__(self, name: str, dimensions: int | None = None) -> None:
        self.name = name
        self.dimensions = dimensions

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    async def embed(self, input: EmbeddingInput) -> list[float]:  # noqa: A002
        """Return the vector for a single text."""
        ...

    # -- optional overrides ---------------------------------------------------

    async def embed_many(self, inputs: list[EmbeddingInput]) -> list[list[float]]:
        """Return one vector per input, in order.  Optional — raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support batch embedding")

    async def embed_image(self, input: ImageEmbeddingInput) -> list[float]:  # noqa: A002
        """Return the vector for an image.  Optional — raises by default."""
        raise NotImplementedError(f"{type(self).__name__} does not support image embedding")

    @property
    def supports_batch(self) -> bool:
        return type(self).embed_many is not EmbeddingProviderBase.embed_many

    @property
    def supports_images(self) -> bool:
        return type(self).embed_image is not EmbeddingProviderBase.embed_image
