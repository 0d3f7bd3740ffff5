"""Domain models shared by ingestion, retrieval, and serving.

Chunks are created inside a single ``ingest`` call and are immutable
afterwards (``frozen=True``); the only later change is the store-assigned
canonical ``document_id``, applied with :meth:`~pydantic.BaseModel.model_copy`.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Metadata = dict[str, Any]
AssetKind = Literal["image", "pdf", "audio", "video", "file"]
ASSET_KINDS: frozenset[str] = frozenset({"image", "pdf", "audio", "video", "file"})


# ---------------------------------------------------------------------------
# Chunks
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ChunkText:
    """Output unit of a chunker: position, text, and exact token count."""

    index: int
    content: str
    token_count: int


class Chunk(BaseModel):
    """A token-bounded slice of a document, ready for (or holding) an embedding.

    Attributes
    ----------
    id:
        Unique chunk identifier.
    document_id:
        Internal identity assigned per ingest call (the store may replace it
        with a pre-existing canonical id for the same ``source_id``).
    source_id:
        Caller-defined logical document identity.
    index:
        Position within the document; contiguous from 0.
    content:
        Chunk text (blank when chunk content storage is disabled).
    token_count:
        Tokens in ``content`` as counted by the chunker.
    metadata:
        Document metadata plus asset / extractor provenance.
    embedding:
        Dense vector; set exactly once per stored chunk.
    document_content:
        Full source text, when document content storage is enabled.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    document_id: str
    source_id: str
    index: int
    content: str
    token_count: int
    metadata: Metadata = Field(default_factory=dict)
    embedding: list[float] | None = None
    document_content: str | None = None


class ScoredChunk(Chunk):
    """A chunk returned by a store query, with its relevance score."""

    score: float


class UpsertResult(BaseModel):
    """What a store reports back after replacing a document's chunks."""

    document_id: str


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class AssetBytes(BaseModel):
    """Inline asset payload.  Bytes travel as base64 in JSON."""

    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    kind: Literal["bytes"] = "bytes"
    data: bytes
    media_type: str | None = None
    filename: str | None = None


class AssetUrl(BaseModel):
    """Remote asset payload, fetched lazily and only when an extractor needs it."""

    kind: Literal["url"] = "url"
    url: str
    media_type: str | None = None
    filename: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)


AssetData = Annotated[AssetBytes | AssetUrl, Field(discriminator="kind")]


class AssetInput(BaseModel):
    """Rich media attached to an ingested document.

    ``asset_id`` must be stable across re-ingests of the same logical asset.
    ``text`` is an optional caption / alt text (used for images).
    """

    asset_id: str
    kind: AssetKind
    data: AssetData
    uri: str | None = None
    text: str | None = None
    metadata: Metadata = Field(default_factory=dict)

    @property
    def resolved_uri(self) -> str | None:
        if self.uri:
            return self.uri
        return self.data.url if isinstance(self.data, AssetUrl) else None

    @property
    def media_type(self) -> str | None:
        return self.data.media_type

    @property
    def filename(self) -> str | None:
        return self.data.filename


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------


class WarningCode(StrEnum):
    """Closed taxonomy of non-fatal ingest outcomes."""

    UNSUPPORTED_KIND = "asset_skipped_unsupported_kind"
    EXTRACTION_DISABLED = "asset_skipped_extraction_disabled"
    EXTRACTION_EMPTY = "asset_skipped_extraction_empty"
    PDF_LLM_EXTRACTION_DISABLED = "asset_skipped_pdf_llm_extraction_disabled"
    PDF_EMPTY_EXTRACTION = "asset_skipped_pdf_empty_extraction"
    IMAGE_NO_MULTIMODAL_AND_NO_CAPTION = "asset_skipped_image_no_multimodal_and_no_caption"
    PROCESSING_ERROR = "asset_processing_error"


class IngestWarning(BaseModel):
    """A tagged, recoverable ingest outcome (asset skipped and why)."""

    code: WarningCode
    message: str
    asset_id: str | None = None
    asset_kind: AssetKind | None = None
    stage: Literal["fetch", "extract"] | None = None
    asset_uri: str | None = None
    asset_media_type: str | None = None

    @classmethod
    def for_asset(
        cls,
        code: WarningCode,
        message: str,
        asset: AssetInput,
        *,
        stage: Literal["fetch", "extract"] | None = None,
    ) -> IngestWarning:
        return cls(
            code=code,
            message=message,
            asset_id=asset.asset_id,
            asset_kind=asset.kind,
            stage=stage,
            asset_uri=asset.resolved_uri,
            asset_media_type=asset.media_type,
        )


# ---------------------------------------------------------------------------
# Ingest
# ---------------------------------------------------------------------------


class IngestInput(BaseModel):
    """Arguments of :meth:`ContextEngine.ingest`.

    ``chunking`` and ``asset_processing`` are partial overrides deep-merged
    over the engine defaults for this call only.
    """

    source_id: str
    content: str = ""
    metadata: Metadata = Field(default_factory=dict)
    chunking: dict[str, Any] | None = None
    assets: list[AssetInput] = Field(default_factory=list)
    asset_processing: dict[str, Any] | None = None


class IngestDurations(BaseModel):
    total_ms: float
    chunking_ms: float
    embedding_ms: float
    storage_ms: float


class IngestResult(BaseModel):
    document_id: str
    chunk_count: int
    embedding_model: str
    warnings: list[IngestWarning] = Field(default_factory=list)
    durations: IngestDurations


class AssetPlan(BaseModel):
    """Dry-run routing decision for one asset."""

    asset_id: str
    kind: AssetKind
    uri: str | None = None
    status: Literal["will_process", "will_skip"]
    reason: WarningCode | None = None
    extractors: list[str] = Field(default_factory=list)


class IngestPlanResult(BaseModel):
    source_id: str
    assets: list[AssetPlan] = Field(default_factory=list)
    warnings: list[IngestWarning] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Retrieve / delete
# ---------------------------------------------------------------------------


class RetrieveScope(BaseModel):
    """Restrict a query.  ``source_id`` is matched as a prefix."""

    source_id: str | None = None


class RetrieveInput(BaseModel):
    query: str
    top_k: int | None = None
    scope: RetrieveScope | None = None


class RetrieveDurations(BaseModel):
    total_ms: float
    embedding_ms: float
    retrieval_ms: float


class RetrieveResult(BaseModel):
    chunks: list[ScoredChunk] = Field(default_factory=list)
    embedding_model: str
    durations: RetrieveDurations


class DeleteInput(BaseModel):
    """Exactly one of ``source_id`` (exact) or ``source_id_prefix`` must be set."""

    source_id: str | None = None
    source_id_prefix: str | None = None


# ---------------------------------------------------------------------------
# Rerank
# ---------------------------------------------------------------------------


class RerankRankingItem(BaseModel):
    """Position of one original candidate in the reranked order."""

    index: int
    rerank_score: float | None = None


class RerankMeta(BaseModel):
    reranker_name: str
    model: str | None = None


class RerankDurations(BaseModel):
    rerank_ms: float
    total_ms: float


class RerankResult(BaseModel):
    chunks: list[ScoredChunk] = Field(default_factory=list)
    ranking: list[RerankRankingItem] = Field(default_factory=list)
    meta: RerankMeta
    durations: RerankDurations
    warnings: list[str] = Field(default_factory=list)
