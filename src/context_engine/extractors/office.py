"""Office document extraction: ``file:docx``, ``file:pptx`` and ``file:xlsx``.

Parsing is local (python-docx, python-pptx, openpyxl) and runs in a
worker thread.  Each strategy is disabled by default and only claims
files whose extension or media type matches its format.
"""

from __future__ import annotations

import asyncio
import io
import logging
from abc import abstractmethod
from collections.abc import Iterable
from typing import Any

from docx import Document
from openpyxl import load_workbook
from pptx import Presentation
from pptx.shapes.group import GroupShape

from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
    cap_text,
)
from context_engine.extractors.file_text import normalise_text
from context_engine.ingestion.asset_config import FileExtractConfig
from context_engine.ingestion.fetch import ext_from_filename, get_asset_bytes, normalize_media_type
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
PPTX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.presentationml.presentation"
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


# ---------------------------------------------------------------------------
# Readers (blocking)
# ---------------------------------------------------------------------------


def read_docx(data: bytes) -> list[tuple[str, str]]:
    """Paragraph text followed by table rows, as one ``docx`` item."""
    document = Document(io.BytesIO(data))
    lines = [p.text for p in document.paragraphs if p.text.strip()]
    for table in document.tables:
        for row in table.rows:
            cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
            if cells:
                lines.append("\t".join(cells))
    return [("docx", "\n".join(lines))]


def _iter_shapes(shapes: Iterable[Any]) -> Iterable[Any]:
    for shape in shapes:
        yield shape
        if isinstance(shape, GroupShape):
            yield from _iter_shapes(shape.shapes)


def read_pptx(data: bytes) -> list[tuple[str, str]]:
    """One ``slide-N`` item per slide that carries text."""
    presentation = Presentation(io.BytesIO(data))
    slides = []
    for number, slide in enumerate(presentation.slides, start=1):
        parts = [
            paragraph.text.strip()
            for shape in _iter_shapes(slide.shapes)
            if shape.has_text_frame
            for paragraph in shape.text_frame.paragraphs
            if paragraph.text.strip()
        ]
        if parts:
            slides.append((f"slide-{number}", "\n".join(parts)))
    return slides


def read_xlsx(data: bytes) -> list[tuple[str, str]]:
    """Every sheet as tab-separated rows under a ``# Sheet:`` heading."""
    workbook = load_workbook(io.BytesIO(data), read_only=True, data_only=True)
    try:
        sections = []
        for name in workbook.sheetnames:
            rows = []
            for row in workbook[name].iter_rows(values_only=True):
                cells = [str(cell) for cell in row if cell is not None]
                if cells:
                    rows.append("\t".join(cells))
            if rows:
                sections.append(f"# Sheet: {name}\n\n" + "\n".join(rows))
    finally:
        workbook.close()
    return [("xlsx", "\n\n".join(sections))]


# ---------------------------------------------------------------------------
# Extractors
# ---------------------------------------------------------------------------


class OfficeExtractor(AssetExtractor):
    """Shared plumbing: match by extension / media type, fetch, read, cap.

    Subclasses set :attr:`extension` and :attr:`media_type` and implement
    :meth:`config` and :meth:`read`.
    """

    extension: str
    media_type: str

    def __init__(self) -> None:
        super().__init__(f"file:{self.extension}")

    @abstractmethod
    def config(self, ctx: ExtractorContext) -> FileExtractConfig: ...

    @abstractmethod
    def read(self, data: bytes) -> list[tuple[str, str]]:
        """Return ``(label, text)`` pairs for *data* (blocking)."""
        ...

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        if asset.kind != "file" or not self.config(ctx).enabled:
            return False
        return (
            ext_from_filename(asset.filename) == self.extension
            or normalize_media_type(asset.media_type) == self.media_type
        )

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = self.config(ctx)
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type=self.media_type,
        )

        sections = await asyncio.to_thread(self.read, fetched.data)
        items: list[ExtractedTextItem] = []
        budget = cfg.max_output_chars
        for label, text in sections:
            text = cap_text(normalise_text(text), budget)
            if not text:
                continue
            budget -= len(text)
            items.append(ExtractedTextItem(label=label, content=text))
            if budget <= 0:
                break

        total_chars = sum(len(t.content) for t in items)
        logger.debug("%s read %d chars from %s", self.name, total_chars, asset.asset_id)
        if total_chars < cfg.min_chars:
            return ExtractionResult(diagnostics={"chars": total_chars, "below_min_chars": True})
        return ExtractionResult(texts=items, diagnostics={"chars": total_chars})


class DocxExtractor(OfficeExtractor):
    extension = "docx"
    media_type = DOCX_MEDIA_TYPE

    def config(self, ctx: ExtractorContext) -> FileExtractConfig:
        return ctx.asset_processing.file.docx

    def read(self, data: bytes) -> list[tuple[str, str]]:
        return read_docx(data)


class PptxExtractor(OfficeExtractor):
    extension = "pptx"
    media_type = PPTX_MEDIA_TYPE

    def config(self, ctx: ExtractorContext) -> FileExtractConfig:
        return ctx.asset_processing.file.pptx

    def read(self, data: bytes) -> list[tuple[str, str]]:
        return read_pptx(data)


class XlsxExtractor(OfficeExtractor):
    extension = "xlsx"
    media_type = XLSX_MEDIA_TYPE

    def config(self, ctx: ExtractorContext) -> FileExtractConfig:
        return ctx.asset_processing.file.xlsx

    def read(self, data: bytes) -> list[tuple[str, str]]:
        return read_xlsx(data)
