"""Asset extractors: pluggable strategies that turn media into text.

The LLM-, transcription- and office-backed extractors pull in their client
and parser libraries lazily, so importing this package stays cheap.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from context_engine.extractors.base import (
    AssetExtractor,
    CallableExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
)
from context_engine.extractors.file_text import FileTextExtractor
from context_engine.extractors.pdf_ocr import PdfOcrExtractor
from context_engine.extractors.pdf_text_layer import PdfTextLayerExtractor

if TYPE_CHECKING:
    from context_engine.extractors.llm import ImageCaptionExtractor, ImageOcrExtractor, PdfLlmExtractor
    from context_engine.extractors.office import DocxExtractor, PptxExtractor, XlsxExtractor
    from context_engine.extractors.transcribe import TranscriptionExtractor
    from context_engine.extractors.video_frames import VideoFramesExtractor

__all__ = [
    "AssetExtractor",
    "CallableExtractor",
    "DocxExtractor",
    "ExtractedTextItem",
    "ExtractionResult",
    "ExtractorContext",
    "FileTextExtractor",
    "ImageCaptionExtractor",
    "ImageOcrExtractor",
    "PdfLlmExtractor",
    "PdfOcrExtractor",
    "PdfTextLayerExtractor",
    "PptxExtractor",
    "TranscriptionExtractor",
    "VideoFramesExtractor",
    "XlsxExtractor",
    "default_extractors",
]

_LAZY = {
    "ImageCaptionExtractor": "context_engine.extractors.llm",
    "ImageOcrExtractor": "context_engine.extractors.llm",
    "PdfLlmExtractor": "context_engine.extractors.llm",
    "TranscriptionExtractor": "context_engine.extractors.transcribe",
    "VideoFramesExtractor": "context_engine.extractors.video_frames",
    "DocxExtractor": "context_engine.extractors.office",
    "PptxExtractor": "context_engine.extractors.office",
    "XlsxExtractor": "context_engine.extractors.office",
}


def __getattr__(name: str):
    """Lazy import for extractors with heavier client or parser dependencies."""
    if name in _LAZY:
        import importlib

        return getattr(importlib.import_module(_LAZY[name]), name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def default_extractors() -> list[AssetExtractor]:
    """The built-in extractors in fallback order.

    Cheap local strategies come first; each LLM, transcription, OCR and
    office strategy only runs when enabled in ``asset_processing``.
    """
    from context_engine.extractors.llm import ImageCaptionExtractor, ImageOcrExtractor, PdfLlmExtractor
    from context_engine.extractors.office import DocxExtractor, PptxExtractor, XlsxExtractor
    from context_engine.extractors.transcribe import TranscriptionExtractor
    from context_engine.extractors.video_frames import VideoFramesExtractor

    return [
        PdfTextLayerExtractor(),
        PdfLlmExtractor(),
        PdfOcrExtractor(),
        ImageOcrExtractor(),
        ImageCaptionExtractor(),
        TranscriptionExtractor("audio"),
        TranscriptionExtractor("video"),
        VideoFramesExtractor(),
        DocxExtractor(),
        PptxExtractor(),
        XlsxExtractor(),
        FileTextExtractor(),
    ]
