"""LLM-backed extractors: ``pdf:llm``, ``image:ocr`` and ``image:caption-llm``.

All three send the asset to a multimodal chat model through
:class:`langchain_openai.ChatOpenAI` and keep the model's reply as a single
text item.  They are disabled by default (model calls cost money).

Supports two endpoints:

1. **OpenAI cloud** (default) — set ``CONTEXT_ENGINE_OPENAI_API_KEY``.
2. **Any OpenAI-compatible server** (vLLM, LiteLLM …) — set
   ``CONTEXT_ENGINE_LLM_BASE_URL``.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from abc import abstractmethod
from collections.abc import Callable
from typing import Any

from langchain_core.language_models.chat_models import BaseChatModel
from langchain_core.messages import HumanMessage
from langchain_openai import ChatOpenAI

from context_engine.config import settings
from context_engine.extractors.base import (
    AssetExtractor,
    ExtractedTextItem,
    ExtractionResult,
    ExtractorContext,
    cap_text,
)
from context_engine.ingestion.asset_config import ImageLlmConfig, PdfLlmExtractionConfig, VideoFramesConfig
from context_engine.ingestion.fetch import FetchedAsset, get_asset_bytes
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)

ModelFactory = Callable[[str], BaseChatModel]
LlmConfig = PdfLlmExtractionConfig | ImageLlmConfig | VideoFramesConfig


def get_llm(model: str | None = None, temperature: float = 0.0) -> ChatOpenAI:
    """Return the configured chat model.

    When ``settings.llm_base_url`` is set the client is pointed at that
    OpenAI-compatible endpoint instead of the OpenAI cloud API.
    """
    kwargs: dict = {
        "model": model or settings.llm_model_name,
        "temperature": temperature,
    }

    if settings.llm_base_url:
        logger.info("Using OpenAI-compatible endpoint: %s", settings.llm_base_url)
        kwargs["base_url"] = settings.llm_base_url
        # Local servers don't need a real key; LangChain requires a non-empty value.
        kwargs["api_key"] = settings.openai_api_key or "EMPTY"
    else:
        kwargs["api_key"] = settings.openai_api_key

    return ChatOpenAI(**kwargs)


def data_url(fetched: FetchedAsset) -> str:
    return f"data:{fetched.media_type};base64,{base64.b64encode(fetched.data).decode('ascii')}"


def _reply_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    # Content-block replies: keep the text blocks only.
    parts = [
        block.get("text", "") if isinstance(block, dict) else str(block)
        for block in content or []
    ]
    return "".join(parts)


class LlmExtractor(AssetExtractor):
    """Shared plumbing: fetch bytes, prompt the model, cap the reply.

    Parameters
    ----------
    name:
        Extractor identifier.
    model_factory:
        Builds a chat model for a model name; defaults to :func:`get_llm`.
        Tests pass a fake chat model here.
    """

    default_media_type = "application/octet-stream"

    def __init__(self, name: str, *, model_factory: ModelFactory | None = None) -> None:
        super().__init__(name)
        self._model_factory = model_factory or get_llm

    # -- required overrides ---------------------------------------------------

    @abstractmethod
    def config(self, ctx: ExtractorContext) -> LlmConfig:
        """The per-strategy settings (model, prompt, limits) for this extractor."""
        ...

    @abstractmethod
    def content_block(self, fetched: FetchedAsset) -> dict[str, Any]:
        """The message block that carries the asset bytes to the model."""
        ...

    # -- helpers --------------------------------------------------------------

    async def ask(self, cfg: LlmConfig, block: dict[str, Any]) -> str:
        """Send *cfg.prompt* plus *block* to the model and return the stripped reply."""
        message = HumanMessage(content=[{"type": "text", "text": cfg.prompt}, block])
        llm = self._model_factory(cfg.model)
        reply = await asyncio.wait_for(llm.ainvoke([message]), cfg.timeout_ms / 1000)
        return _reply_text(reply.content).strip()

    # -- AssetExtractor overrides ---------------------------------------------

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return self.config(ctx).enabled

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = self.config(ctx)
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type=self.default_media_type,
        )

        text = cap_text(await self.ask(cfg, self.content_block(fetched)), cfg.max_output_chars)
        logger.debug("%s produced %d chars for asset %s", self.name, len(text), asset.asset_id)
        if not text:
            return ExtractionResult(diagnostics={"model": cfg.model})
        return ExtractionResult(
            texts=[ExtractedTextItem(label=self.name.split(":", 1)[1], content=text)],
            diagnostics={"model": cfg.model},
        )


class PdfLlmExtractor(LlmExtractor):
    default_media_type = "application/pdf"

    def __init__(self, *, model_factory: ModelFactory | None = None) -> None:
        super().__init__("pdf:llm", model_factory=model_factory)

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == "pdf" and super().supports(asset, ctx)

    def config(self, ctx: ExtractorContext) -> PdfLlmExtractionConfig:
        return ctx.asset_processing.pdf.llm_extraction

    def content_block(self, fetched: FetchedAsset) -> dict[str, Any]:
        return {
            "type": "file",
            "file": {"filename": fetched.filename or "document.pdf", "file_data": data_url(fetched)},
        }


class _ImageLlmExtractor(LlmExtractor):
    default_media_type = "image/jpeg"

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == "image" and super().supports(asset, ctx)

    def content_block(self, fetched: FetchedAsset) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": data_url(fetched)}}


class ImageOcrExtractor(_ImageLlmExtractor):
    def __init__(self, *, model_factory: ModelFactory | None = None) -> None:
        super().__init__("image:ocr", model_factory=model_factory)

    def config(self, ctx: ExtractorContext) -> ImageLlmConfig:
        return ctx.asset_processing.image.ocr


class ImageCaptionExtractor(_ImageLlmExtractor):
    def __init__(self, *, model_factory: ModelFactory | None = None) -> None:
        super().__init__("image:caption-llm", model_factory=model_factory)

    def config(self, ctx: ExtractorContext) -> ImageLlmConfig:
        return ctx.asset_processing.image.caption_llm
