"""Extractor contract: turn an asset into zero or more text items.

Adding a new extraction strategy only requires subclassing
:class:`AssetExtractor` and implementing :meth:`~AssetExtractor.supports`
and :meth:`~AssetExtractor.extract`.  The router decides *when* an
extractor runs; the extractor decides *whether it can* (``supports``)
and *how* (``extract``).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from context_engine.ingestion.asset_config import AssetProcessingConfig
from context_engine.models import AssetInput, Metadata


@dataclass(frozen=True)
class ExtractedTextItem:
    """One piece of text recovered from an asset.

    Attributes
    ----------
    label:
        Short tag for the item (``"fulltext"``, ``"page-3"``, ``"segment-2"``).
    content:
        The extracted text.
    confidence:
        Extractor-reported confidence in ``[0, 1]``, when available.
    page_range:
        Inclusive 1-based page span for document sources.
    time_range_sec:
        Start / end second for audio and video sources.
    """

    label: str
    content: str
    confidence: float | None = None
    page_range: tuple[int, int] | None = None
    time_range_sec: tuple[float, float] | None = None


@dataclass
class ExtractionResult:
    texts: list[ExtractedTextItem] = field(default_factory=list)
    metadata: Metadata = field(default_factory=dict)
    diagnostics: dict[str, Any] = field(default_factory=dict)

    @property
    def non_empty(self) -> list[ExtractedTextItem]:
        return [t for t in self.texts if t.content.strip()]


@dataclass(frozen=True)
class ExtractorContext:
    """What an extractor may read besides the asset itself."""

    asset_processing: AssetProcessingConfig
    source_id: str
    document_id: str
    metadata: Metadata = field(default_factory=dict)


class AssetExtractor(ABC):
    """Backend-agnostic extractor interface.

    Parameters
    ----------
    name:
        Stable identifier recorded in chunk metadata as ``extractor``
        (e.g. ``"pdf:text-layer"``).
    """

    def __init__(self, name: str) -> None:
        self.name = name

    @abstractmethod
    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        """Return ``True`` if this extractor should run for *asset*.

        Must be cheap and side-effect free: it is also called by the
        dry-run planner.
        """
        ...

    @abstractmethod
    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        """Extract text items from *asset*.  May raise; the router applies ``on_error``."""
        ...

    def __repr__(self) -> str:  # noqa: D105
        return f"{type(self).__name__}(name={self.name!r})"


class CallableExtractor(AssetExtractor):
    """Wrap plain functions as an extractor (handy for custom logic and tests)."""

    def __init__(
        self,
        name: str,
        *,
        supports: Callable[[AssetInput, ExtractorContext], bool],
        extract: Callable[[AssetInput, ExtractorContext], Awaitable[ExtractionResult]],
    ) -> None:
        super().__init__(name)
        self._supports = supports
        self._extract = extract

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return self._supports(asset, ctx)

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        return await self._extract(asset, ctx)


def cap_text(text: str, max_chars: int) -> str:
    """Truncate *text* to *max_chars* (no-op for non-positive limits)."""
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip()
