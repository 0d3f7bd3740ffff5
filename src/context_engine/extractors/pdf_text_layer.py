"""PDF text-layer extraction (``pdf:text-layer``) with :mod:`pypdf`.

Cheap and local: reads the embedded text of each page.  Scanned PDFs have
no text layer, so a result shorter than ``min_chars`` is reported as empty
and the router falls through to the next extractor (LLM / OCR).
"""

from __future__ import annotations

import asyncio
import io
import logging

from pypdf import PdfReader

from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
    cap_text,
)
from context_engine.ingestion.fetch import get_asset_bytes
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)


def read_pages(data: bytes, max_pages: int | None = None) -> list[str]:
    """Return the text of each page (blocking)."""
    reader = PdfReader(io.BytesIO(data))
    pages = reader.pages if max_pages is None else reader.pages[:max_pages]
    return [(page.extract_text() or "").strip() for page in pages]


class PdfTextLayerExtractor(AssetExtractor):
    def __init__(self) -> None:
        super().__init__("pdf:text-layer")

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == "pdf" and ctx.asset_processing.pdf.text_layer.enabled

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = ctx.asset_processing.pdf.text_layer
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type="application/pdf",
        )

        pages = await asyncio.to_thread(read_pages, fetched.data, cfg.max_pages)
        total_chars = sum(len(p) for p in pages)
        logger.debug("pdf:text-layer read %d pages (%d chars) from %s", len(pages), total_chars, asset.asset_id)

        if total_chars < cfg.min_chars:
            return ExtractionResult(diagnostics={"pages": len(pages), "chars": total_chars})

        items: list[ExtractedTextItem] = []
        budget = cfg.max_output_chars
        for number, text in enumerate(pages, start=1):
            if not text or budget <= 0:
                continue
            text = cap_text(text, budget)
            budget -= len(text)
            items.append(ExtractedTextItem(label=f"page-{number}", content=text, page_range=(number, number)))

        return ExtractionResult(texts=items, diagnostics={"pages": len(pages), "chars": total_chars})
