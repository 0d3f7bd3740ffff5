"""Speech-to-text extractors: ``audio:transcribe`` and ``video:transcribe``.

Uses the OpenAI transcription endpoint (``whisper-1`` by default) through
:class:`openai.AsyncOpenAI`.  Each returned segment becomes one text item
carrying its ``time_range_sec``; when the model returns no segments the
whole transcript is kept as a single item.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from openai import AsyncOpenAI

from context_engine.config import settings
from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
)
from context_engine.ingestion.asset_config import TranscriptionConfig
from context_engine.ingestion.fetch import get_asset_bytes
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)

ClientFactory = Callable[[], Any]


def get_openai_client() -> AsyncOpenAI:
    """Return an async OpenAI client honouring ``settings.llm_base_url``."""
    kwargs: dict = {"api_key": settings.openai_api_key or "EMPTY"}
    if settings.llm_base_url:
        kwargs["base_url"] = settings.llm_base_url
    return AsyncOpenAI(**kwargs)


def _field(obj: Any, name: str) -> Any:
    return obj.get(name) if isinstance(obj, dict) else getattr(obj, name, None)


class TranscriptionExtractor(AssetExtractor):
    """Transcribe the audio track of an ``audio`` or ``video`` asset.

    Parameters
    ----------
    kind:
        ``"audio"`` or ``"video"``.
    client_factory:
        Returns an object exposing ``audio.transcriptions.create``; defaults
        to :func:`get_openai_client`.
    """

    def __init__(self, kind: str, *, client_factory: ClientFactory | None = None) -> None:
        if kind not in ("audio", "video"):
            raise ValueError(f"Transcription supports audio and video assets, not {kind!r}")
        super().__init__(f"{kind}:transcribe")
        self.kind = kind
        self._client_factory = client_factory or get_openai_client

    def _config(self, ctx: ExtractorContext) -> TranscriptionConfig:
        if self.kind == "audio":
            return ctx.asset_processing.audio.transcription
        return ctx.asset_processing.video.transcription

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == self.kind and self._config(ctx).enabled

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = self._config(ctx)
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type="audio/mpeg" if self.kind == "audio" else "video/mp4",
        )

        client = self._client_factory()
        filename = fetched.filename or f"{asset.asset_id}.{fetched.media_type.rsplit('/', 1)[-1]}"
        transcription = await asyncio.wait_for(
            client.audio.transcriptions.create(
                model=cfg.model,
                file=(filename, fetched.data, fetched.media_type),
                response_format="verbose_json",
            ),
            cfg.timeout_ms / 1000,
        )

        items: list[ExtractedTextItem] = []
        for i, segment in enumerate(_field(transcription, "segments") or []):
            text = (_field(segment, "text") or "").strip()
            if not text:
                continue
            start, end = _field(segment, "start"), _field(segment, "end")
            time_range = (float(start), float(end)) if start is not None and end is not None else None
            items.append(ExtractedTextItem(label=f"segment-{i}", content=text, time_range_sec=time_range))

        if not items:
            full = (_field(transcription, "text") or "").strip()
            if full:
                items.append(ExtractedTextItem(label="transcript", content=full))

        logger.debug("%s produced %d segments for asset %s", self.name, len(items), asset.asset_id)
        return ExtractionResult(texts=items, diagnostics={"model": cfg.model, "segments": len(items)})
