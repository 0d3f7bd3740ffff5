"""Exception hierarchy for the context engine."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from context_engine.models import IngestWarning


class ContextEngineError(Exception):
    """Base class for every error raised by the engine."""


class ConfigurationError(ContextEngineError, ValueError):
    """Invalid engine configuration or call arguments."""


class ChunkerNotFoundError(ConfigurationError):
    """A chunking method was requested that is neither built in nor registered."""

    def __init__(self, method: str) -> None:
        super().__init__(
            f"Chunker {method!r} is not installed. "
            f"Register it with register_chunker_plugin() before resolving."
        )
        self.method = method


class IngestError(ContextEngineError):
    """An ingest warning whose policy resolved to ``fail``.

    The triggering :class:`~context_engine.models.IngestWarning` is kept on
    :attr:`warning` so callers can inspect the asset that aborted the run.
    """

    def __init__(self, warning: IngestWarning) -> None:
        super().__init__(warning.message)
        self.warning = warning


class UnsupportedAssetError(IngestError):
    """Asset skipped by routing while ``on_unsupported_asset="fail"``."""


class AssetProcessingError(IngestError):
    """Fetching or extracting an asset failed while ``on_error="fail"``."""


class AssetFetchError(ContextEngineError):
    """A URL asset could not be fetched (disabled, disallowed host, too large, HTTP error)."""


class EmbeddingError(ContextEngineError):
    """The embedding provider failed or violated its contract."""


class RerankError(ContextEngineError):
    """Reranking could not proceed under the requested policy."""


class ExternalToolError(ContextEngineError):
    """A worker binary (``pdftoppm``, ``tesseract``, ``ffmpeg``) is missing or exited non-zero."""
