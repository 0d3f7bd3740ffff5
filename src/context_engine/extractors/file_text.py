"""Plain-text file extraction (``file:text``).

Handles text-like files (``.txt``, ``.md``, ``.csv``, ``.json``, ``.html`` …)
by decoding the bytes as UTF-8.  HTML is parsed with BeautifulSoup and
reduced to its visible text.
"""

from __future__ import annotations

import re
import unicodedata

from bs4 import BeautifulSoup

from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
    cap_text,
)
from context_engine.ingestion.fetch import ext_from_filename, get_asset_bytes, normalize_media_type
from context_engine.models import AssetInput

TEXT_EXTENSIONS = frozenset({"txt", "text", "md", "markdown", "csv", "tsv", "json", "log", "html", "htm", "xml", "yaml", "yml", "rst"})
TEXT_MEDIA_TYPES = frozenset({"application/json", "application/xml", "application/x-yaml", "text/markdown"})

# Boiler-plate elements dropped before taking the page text.
BOILERPLATE_TAGS = ["script", "style", "nav", "footer", "header", "aside", "noscript", "iframe"]


def is_text_like(media_type: str | None, filename: str | None) -> bool:
    mt = normalize_media_type(media_type)
    if mt and (mt.startswith("text/") or mt in TEXT_MEDIA_TYPES):
        return True
    return ext_from_filename(filename) in TEXT_EXTENSIONS


def normalise_text(text: str) -> str:
    """Unicode NFC, collapse whitespace, strip control chars."""
    text = unicodedata.normalize("NFC", text)
    text = re.sub(r"[^\S\n]+", " ", text)       # collapse spaces (keep \n)
    text = re.sub(r"\n{3,}", "\n\n", text)       # max two consecutive newlines
    text = re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f]", "", text)  # ctrl chars
    return text.strip()


def strip_html(markup: str) -> str:
    """Return the visible text of *markup*, one block per line."""
    soup = BeautifulSoup(markup, "html.parser")
    for tag in soup(BOILERPLATE_TAGS):
        tag.decompose()
    return normalise_text(soup.get_text(separator="\n", strip=True))


class FileTextExtractor(AssetExtractor):
    """Decode text-like ``file`` assets."""

    def __init__(self) -> None:
        super().__init__("file:text")

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        if asset.kind != "file" or not ctx.asset_processing.file.text.enabled:
            return False
        # URL assets without a declared type or filename are tried optimistically.
        if asset.media_type is None and asset.filename is None:
            return True
        return is_text_like(asset.media_type, asset.filename)

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = ctx.asset_processing.file.text
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type="text/plain",
        )

        text = fetched.data.decode("utf-8", errors="replace")
        if fetched.media_type == "text/html" or ext_from_filename(fetched.filename) in {"html", "htm"}:
            text = strip_html(text)
        text = cap_text(normalise_text(text), cfg.max_output_chars)

        if len(text) < cfg.min_chars:
            return ExtractionResult(diagnostics={"chars": len(text), "below_min_chars": True})
        return ExtractionResult(
            texts=[ExtractedTextItem(label="fulltext", content=text)],
            diagnostics={"chars": len(text), "media_type": fetched.media_type},
        )
