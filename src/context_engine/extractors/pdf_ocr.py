"""Scanned-PDF OCR (``pdf:ocr``) with Poppler and Tesseract.

Pages are rasterised with ``pdftoppm`` and each image is read by
``tesseract``.  Worker-only: both binaries must be on the host (or their
paths set in ``asset_processing.pdf.ocr``).
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path

from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
    cap_text,
)
from context_engine.extractors.process import run_command
from context_engine.ingestion.fetch import get_asset_bytes
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)

_PAGE_FILE = re.compile(r"^page-(\d+)\.png$")


def page_images(directory: Path) -> list[tuple[int, Path]]:
    """Rasterised pages in *directory*, ordered by page number."""
    pages = []
    for path in directory.iterdir():
        match = _PAGE_FILE.match(path.name)
        if match:
            pages.append((int(match.group(1)), path))
    return sorted(pages)


class PdfOcrExtractor(AssetExtractor):
    def __init__(self) -> None:
        super().__init__("pdf:ocr")

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == "pdf" and ctx.asset_processing.pdf.ocr.enabled

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = ctx.asset_processing.pdf.ocr
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type="application/pdf",
        )

        items: list[ExtractedTextItem] = []
        budget = cfg.max_output_chars
        with tempfile.TemporaryDirectory(prefix="context-engine-pdf-ocr-") as tmp:
            workdir = Path(tmp)
            pdf_path = workdir / "input.pdf"
            pdf_path.write_bytes(fetched.data)

            args = ["-png", "-r", str(cfg.dpi), "-f", "1"]
            if cfg.max_pages:
                args += ["-l", str(cfg.max_pages)]
            await run_command(cfg.pdftoppm_path, [*args, str(pdf_path), str(workdir / "page")], workdir)

            pages = page_images(workdir)
            for number, image in pages:
                if budget <= 0:
                    break
                text = (await run_command(cfg.tesseract_path, [str(image), "stdout", "-l", cfg.lang], workdir)).strip()
                if not text:
                    continue
                text = cap_text(text, budget)
                budget -= len(text)
                items.append(ExtractedTextItem(label=f"page-{number}", content=text, page_range=(number, number)))

        total_chars = sum(len(t.content) for t in items)
        logger.debug("pdf:ocr read %d pages (%d chars) from %s", len(pages), total_chars, asset.asset_id)
        diagnostics = {"pages": len(pages), "chars": total_chars}
        if total_chars < cfg.min_chars:
            return ExtractionResult(diagnostics=diagnostics)
        return ExtractionResult(texts=items, diagnostics=diagnostics)
