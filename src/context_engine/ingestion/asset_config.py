"""Typed asset-processing configuration and the deep-merge used for overrides.

Each leaf field has exactly one default here.  LLM-backed strategies
default to disabled so that ingesting a document never incurs model cost
unless explicitly enabled.
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, Field

from context_engine.config import settings

Policy = Literal["skip", "fail"]

_MB = 1024 * 1024
DEFAULT_LLM_MODEL = "gpt-4o-mini"

M = TypeVar("M", bound=BaseModel)


class FetchConfig(BaseModel):
    """Rules for downloading URL assets."""

    enabled: bool = True
    allowed_hosts: list[str] | None = None
    max_bytes: int = 15 * _MB
    timeout_ms: int = 20_000
    headers: dict[str, str] = Field(default_factory=dict)


# -- pdf ----------------------------------------------------------------------


class PdfTextLayerConfig(BaseModel):
    enabled: bool = True
    max_bytes: int = 15 * _MB
    max_output_chars: int = 200_000
    min_chars: int = 200
    max_pages: int | None = None


class PdfLlmExtractionConfig(BaseModel):
    enabled: bool = False
    model: str = DEFAULT_LLM_MODEL
    prompt: str = (
        "Extract all readable text from this PDF as faithfully as possible. "
        "Preserve structure with headings and lists when obvious. "
        "Output plain text or markdown only. Do not add commentary."
    )
    timeout_ms: int = 60_000
    max_bytes: int = 15 * _MB
    max_output_chars: int = 200_000


class PdfOcrConfig(BaseModel):
    enabled: bool = False
    max_bytes: int = 15 * _MB
    max_output_chars: int = 200_000
    min_chars: int = 200
    max_pages: int | None = None
    dpi: int = 200
    lang: str = "eng"
    pdftoppm_path: str = "pdftoppm"
    tesseract_path: str = "tesseract"


class PdfConfig(BaseModel):
    text_layer: PdfTextLayerConfig = Field(default_factory=PdfTextLayerConfig)
    llm_extraction: PdfLlmExtractionConfig = Field(default_factory=PdfLlmExtractionConfig)
    ocr: PdfOcrConfig = Field(default_factory=PdfOcrConfig)

    @property
    def any_enabled(self) -> bool:
        return self.text_layer.enabled or self.llm_extraction.enabled or self.ocr.enabled


# -- image --------------------------------------------------------------------


class ImageLlmConfig(BaseModel):
    enabled: bool = False
    model: str = DEFAULT_LLM_MODEL
    prompt: str = ""
    timeout_ms: int = 60_000
    max_bytes: int = 10 * _MB
    max_output_chars: int = 50_000


def _image_ocr() -> ImageLlmConfig:
    return ImageLlmConfig(
        prompt="Extract all legible text from this image. Output plain text only.",
    )


def _image_caption() -> ImageLlmConfig:
    return ImageLlmConfig(
        prompt="Write a concise, factual caption describing this image.",
        max_output_chars=10_000,
    )


class ImageConfig(BaseModel):
    ocr: ImageLlmConfig = Field(default_factory=_image_ocr)
    caption_llm: ImageLlmConfig = Field(default_factory=_image_caption)


# -- audio / video ------------------------------------------------------------


class TranscriptionConfig(BaseModel):
    enabled: bool = False
    model: str = Field(default_factory=lambda: settings.transcription_model)
    timeout_ms: int = 120_000
    max_bytes: int = 25 * _MB


class VideoFramesConfig(BaseModel):
    enabled: bool = False
    sample_fps: float = 0.2
    max_frames: int = 50
    max_bytes: int = 50 * _MB
    model: str = DEFAULT_LLM_MODEL
    prompt: str = "Extract all legible text from this video frame."
    timeout_ms: int = 60_000
    max_output_chars: int = 50_000
    ffmpeg_path: str = "ffmpeg"


class AudioConfig(BaseModel):
    transcription: TranscriptionConfig = Field(default_factory=TranscriptionConfig)


class VideoConfig(BaseModel):
    transcription: TranscriptionConfig = Field(
        default_factory=lambda: TranscriptionConfig(max_bytes=50 * _MB)
    )
    frames: VideoFramesConfig = Field(default_factory=VideoFramesConfig)


# -- file ---------------------------------------------------------------------


class FileExtractConfig(BaseModel):
    enabled: bool = False
    max_bytes: int = 15 * _MB
    max_output_chars: int = 200_000
    min_chars: int = 50


class FileConfig(BaseModel):
    text: FileExtractConfig = Field(default_factory=lambda: FileExtractConfig(enabled=True, max_bytes=5 * _MB))
    docx: FileExtractConfig = Field(default_factory=FileExtractConfig)
    pptx: FileExtractConfig = Field(default_factory=lambda: FileExtractConfig(max_bytes=30 * _MB))
    xlsx: FileExtractConfig = Field(default_factory=lambda: FileExtractConfig(max_bytes=30 * _MB))


# -- root ---------------------------------------------------------------------


class AssetProcessingConfig(BaseModel):
    """Per-kind extraction settings plus the global skip/fail policies.

    Attributes
    ----------
    on_unsupported_asset:
        What to do when routing cannot process an asset (unsupported kind,
        strategy disabled, image without multimodal support or caption).
    on_error:
        What to do when fetching or an extractor raises / times out.
    concurrency:
        Maximum assets processed at the same time within one ingest call.
    extractor_timeout_ms:
        Upper bound on a single extractor call; ``None`` leaves it to the
        extractor's own timeout.
    """

    on_unsupported_asset: Policy = "skip"
    on_error: Policy = "skip"
    concurrency: int = Field(default_factory=lambda: settings.asset_concurrency, ge=1)
    extractor_timeout_ms: int | None = None
    fetch: FetchConfig = Field(default_factory=FetchConfig)
    pdf: PdfConfig = Field(default_factory=PdfConfig)
    image: ImageConfig = Field(default_factory=ImageConfig)
    audio: AudioConfig = Field(default_factory=AudioConfig)
    video: VideoConfig = Field(default_factory=VideoConfig)
    file: FileConfig = Field(default_factory=FileConfig)

    def kind_enabled(self, kind: str) -> bool:
        """Whether any configured strategy for *kind* is switched on."""
        if kind == "pdf":
            return self.pdf.any_enabled
        if kind == "image":
            return self.image.ocr.enabled or self.image.caption_llm.enabled
        if kind == "audio":
            return self.audio.transcription.enabled
        if kind == "video":
            return self.video.transcription.enabled or self.video.frames.enabled
        if kind == "file":
            f = self.file
            return f.text.enabled or f.docx.enabled or f.pptx.enabled or f.xlsx.enabled
        return False


class EmbeddingProcessingConfig(BaseModel):
    """Bounds for the embedding phase of ingest."""

    concurrency: int = Field(default_factory=lambda: settings.embedding_concurrency, ge=1)
    batch_size: int = Field(default_factory=lambda: settings.embedding_batch_size, ge=1)
    timeout_ms: int | None = None


class StorageConfig(BaseModel):
    """Which texts are persisted alongside the vectors."""

    store_chunk_content: bool = True
    store_document_content: bool = True


# ---------------------------------------------------------------------------
# Deep merge
# ---------------------------------------------------------------------------


def _as_mapping(value: BaseModel | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(value, BaseModel):
        return value.model_dump(exclude_unset=True)
    return dict(value)


def merge_config(base: M, overrides: BaseModel | Mapping[str, Any] | None) -> M:
    """Recursively overlay *overrides* on the typed model *base*.

    Nested models merge field by field; lists, dicts of scalars, and other
    leaves are replaced; ``None`` override values are ignored.  The result
    is re-validated, so an override of the wrong type raises
    :class:`pydantic.ValidationError`.  *base* is never mutated.
    """
    if not overrides:
        return base

    data = base.model_dump()
    for key, value in _as_mapping(overrides).items():
        if value is None:
            continue
        if key not in type(base).model_fields:
            raise ValueError(f"Unknown {type(base).__name__} field: {key!r}")
        current = getattr(base, key)
        if isinstance(current, BaseModel) and isinstance(value, (Mapping, BaseModel)):
            data[key] = merge_config(current, value).model_dump()
        elif isinstance(value, BaseModel):
            data[key] = value.model_dump()
        else:
            data[key] = value
    return type(base).model_validate(data)
