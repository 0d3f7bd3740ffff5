"""
Context engine — chunk, embed, store and retrieve documents and their media assets.

Public surface
--------------
- :class:`ContextEngine`, :class:`ContextEngineConfig`, :func:`create_context_engine`.
- Call models: :class:`IngestInput`, :class:`RetrieveInput`, :class:`DeleteInput`,
  :class:`AssetInput` and their results.
- :func:`get_chunk_asset_ref`, :func:`is_asset_chunk` — asset provenance of a chunk.
"""

from context_engine.assets import ChunkAssetRef, get_chunk_asset_ref, is_asset_chunk
from context_engine.engine import ContextEngine, ContextEngineConfig, create_context_engine
from context_engine.errors import (
    AssetFetchError,
    AssetProcessingError,
    ChunkerNotFoundError,
    ConfigurationError,
    ContextEngineError,
    EmbeddingError,
    ExternalToolError,
    IngestError,
    RerankError,
    UnsupportedAssetError,
)
from context_engine.events import DebugEvent
from context_engine.models import (
    AssetBytes,
    AssetInput,
    AssetUrl,
    Chunk,
    DeleteInput,
    IngestInput,
    IngestPlanResult,
    IngestResult,
    IngestWarning,
    RetrieveInput,
    RetrieveResult,
    RetrieveScope,
    ScoredChunk,
    WarningCode,
)
from context_engine.retrieval.reranker import RerankInput

__all__ = [
    "AssetBytes",
    "AssetFetchError",
    "AssetInput",
    "AssetProcessingError",
    "AssetUrl",
    "Chunk",
    "ChunkAssetRef",
    "ChunkerNotFoundError",
    "ConfigurationError",
    "ContextEngine",
    "ContextEngineConfig",
    "ContextEngineError",
    "DebugEvent",
    "DeleteInput",
    "EmbeddingError",
    "ExternalToolError",
    "IngestError",
    "IngestInput",
    "IngestPlanResult",
    "IngestResult",
    "IngestWarning",
    "RerankError",
    "RerankInput",
    "RetrieveInput",
    "RetrieveResult",
    "RetrieveScope",
    "ScoredChunk",
    "UnsupportedAssetError",
    "WarningCode",
    "create_context_engine",
    "get_chunk_asset_ref",
    "is_asset_chunk",
]
