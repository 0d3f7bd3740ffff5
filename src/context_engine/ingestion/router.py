"""Route each asset to extractors and turn the outcome into chunk drafts.

Routing rules
-------------
* **pdf / audio / video / file** — the supporting extractors form a
  fallback chain in registration order.  The first one returning
  non-empty text wins and the rest are skipped.  A failing extractor is
  recorded as ``asset_processing_error`` (or aborts under
  ``on_error="fail"``) and the chain moves on.
* **image** — if the embedding provider can embed images, the image itself
  becomes one chunk (its content is the caption, if any).  Otherwise a
  caption is chunked as text.  Every supporting image extractor (OCR,
  LLM caption) runs in addition and its text is appended.

Nothing is indexed here: the router returns :class:`ChunkDraft` objects
in a deterministic order and the pipeline assigns chunk indexes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Literal

from context_engine.embedding.base import EmbeddingProviderBase
from context_engine.errors import AssetFetchError
from context_engine.events import OpScope
from context_engine.extractors.base import AssetExtractor, ExtractedTextItem, ExtractionResult, ExtractorContext
from context_engine.ingestion.asset_config import AssetProcessingConfig
from context_engine.ingestion.chunker import Chunker, ChunkingOptions, count_tokens
from context_engine.ingestion.embedder import EmbedUnit, ImageUnit, TextUnit
from context_engine.ingestion.fetch import get_asset_bytes
from context_engine.ingestion.policy import enforce, error_for, warning_is_fatal
from context_engine.models import AssetInput, AssetPlan, IngestWarning, Metadata, WarningCode

logger = logging.getLogger(__name__)

IMAGE_EMBED_EXTRACTOR = "image:embed"
IMAGE_CAPTION_EXTRACTOR = "image:caption"


@dataclass(frozen=True)
class ChunkDraft:
    """A chunk before it has an index, an id, or a vector."""

    content: str
    token_count: int
    metadata: Metadata
    unit: EmbedUnit


@dataclass
class AssetOutcome:
    asset: AssetInput
    drafts: list[ChunkDraft] = field(default_factory=list)
    warnings: list[IngestWarning] = field(default_factory=list)


def asset_metadata(asset: AssetInput, document_metadata: Metadata) -> Metadata:
    """Document metadata overlaid with the asset's own metadata and identity."""
    meta: Metadata = {**document_metadata, **asset.metadata, "asset_kind": asset.kind, "asset_id": asset.asset_id}
    if asset.resolved_uri:
        meta["asset_uri"] = asset.resolved_uri
    if asset.media_type:
        meta["asset_media_type"] = asset.media_type
    return meta


class AssetRouter:
    """Process assets of one ingest call.

    Parameters
    ----------
    extractors:
        Registered extractors, in fallback order.
    provider:
        Embedding provider; decides whether images are embedded directly.
    chunker / options:
        Used to split every extracted text item.
    ctx:
        Shared extractor context (resolved asset config, ids, metadata).
    scope:
        Event scope of the running ingest.
    """

    def __init__(
        self,
        extractors: list[AssetExtractor],
        provider: EmbeddingProviderBase,
        chunker: Chunker,
        options: ChunkingOptions,
        ctx: ExtractorContext,
        scope: OpScope | None = None,
    ) -> None:
        self.extractors = extractors
        self.provider = provider
        self.chunker = chunker
        self.options = options
        self.ctx = ctx
        self.scope = scope

    @property
    def config(self) -> AssetProcessingConfig:
        return self.ctx.asset_processing

    # -- public API -----------------------------------------------------------

    async def process(self, asset: AssetInput) -> AssetOutcome:
        """Route *asset*; raise :class:`~context_engine.errors.IngestError` when policy says fail."""
        outcome = AssetOutcome(asset=asset)
        started = time.perf_counter()
        self._emit("asset:start", asset_id=asset.asset_id, asset_kind=asset.kind)

        if asset.kind == "image":
            await self._process_image(asset, outcome)
        else:
            await self._process_chain(asset, outcome)

        self._emit(
            "asset:processed" if outcome.drafts else "asset:skipped",
            asset_id=asset.asset_id,
            asset_kind=asset.kind,
            chunk_count=len(outcome.drafts),
            warnings=[w.code.value for w in outcome.warnings],
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return outcome

    def plan(self, asset: AssetInput) -> tuple[AssetPlan, IngestWarning | None]:
        """Dry-run routing decision for *asset*; never fetches or extracts."""
        names = [e.name for e in self._supporting(asset)]
        reason: WarningCode | None = None

        if asset.kind == "image":
            if self.provider.supports_images:
                names.insert(0, IMAGE_EMBED_EXTRACTOR)
            elif (asset.text or "").strip():
                names.insert(0, IMAGE_CAPTION_EXTRACTOR)
            if not names:
                reason = WarningCode.IMAGE_NO_MULTIMODAL_AND_NO_CAPTION
        elif not names:
            reason = self._no_extractor_code(asset)

        plan = AssetPlan(
            asset_id=asset.asset_id,
            kind=asset.kind,
            uri=asset.resolved_uri,
            status="will_skip" if reason else "will_process",
            reason=reason,
            extractors=names,
        )
        warning = IngestWarning.for_asset(reason, self._skip_message(reason, asset), asset) if reason else None
        return plan, warning

    # -- routing --------------------------------------------------------------

    async def _process_chain(self, asset: AssetInput, outcome: AssetOutcome) -> None:
        chain = self._supporting(asset)
        if not chain:
            code = self._no_extractor_code(asset)
            self._warn(outcome, IngestWarning.for_asset(code, self._skip_message(code, asset), asset))
            return

        completed = 0
        for extractor in chain:
            result = await self._run_extractor(extractor, asset, outcome)
            if result is None:
                continue
            completed += 1
            items = result.non_empty
            if items:
                self._add_items(outcome, extractor, items, result)
                return
            logger.debug("%s returned no text for asset %s, trying next", extractor.name, asset.asset_id)

        # When every extractor raised, the processing errors already explain the skip.
        if completed:
            code = WarningCode.PDF_EMPTY_EXTRACTION if asset.kind == "pdf" else WarningCode.EXTRACTION_EMPTY
            self._warn(outcome, IngestWarning.for_asset(code, self._skip_message(code, asset), asset))

    async def _process_image(self, asset: AssetInput, outcome: AssetOutcome) -> None:
        caption = (asset.text or "").strip()
        base_meta = asset_metadata(asset, self.ctx.metadata)

        if self.provider.supports_images:
            try:
                fetched = await get_asset_bytes(
                    asset.data,
                    self.config.fetch,
                    max_bytes=self.config.fetch.max_bytes,
                    default_media_type="image/jpeg",
                )
            except AssetFetchError as exc:
                self._record_error(outcome, asset, exc, stage="fetch")
            else:
                outcome.drafts.append(
                    ChunkDraft(
                        content=caption,
                        token_count=count_tokens(caption) if caption else 0,
                        metadata={**base_meta, "extractor": IMAGE_EMBED_EXTRACTOR},
                        unit=ImageUnit(data=fetched.data, media_type=fetched.media_type, asset_id=asset.asset_id),
                    )
                )
        elif caption:
            for piece in self.chunker(caption, self.options):
                outcome.drafts.append(
                    ChunkDraft(
                        content=piece.content,
                        token_count=piece.token_count,
                        metadata={**base_meta, "extractor": IMAGE_CAPTION_EXTRACTOR},
                        unit=TextUnit(piece.content),
                    )
                )

        for extractor in self._supporting(asset):
            result = await self._run_extractor(extractor, asset, outcome)
            if result is not None and result.non_empty:
                self._add_items(outcome, extractor, result.non_empty, result)

        if not outcome.drafts and not outcome.warnings:
            code = WarningCode.IMAGE_NO_MULTIMODAL_AND_NO_CAPTION
            self._warn(outcome, IngestWarning.for_asset(code, self._skip_message(code, asset), asset))

    # -- helpers --------------------------------------------------------------

    def _supporting(self, asset: AssetInput) -> list[AssetExtractor]:
        return [e for e in self.extractors if e.supports(asset, self.ctx)]

    def _no_extractor_code(self, asset: AssetInput) -> WarningCode:
        if self.config.kind_enabled(asset.kind):
            return WarningCode.UNSUPPORTED_KIND
        if asset.kind == "pdf":
            return WarningCode.PDF_LLM_EXTRACTION_DISABLED
        return WarningCode.EXTRACTION_DISABLED

    @staticmethod
    def _skip_message(code: WarningCode, asset: AssetInput) -> str:
        messages = {
            WarningCode.UNSUPPORTED_KIND: f"No installed extractor supports {asset.kind} asset",
            WarningCode.EXTRACTION_DISABLED: f"Extraction for {asset.kind} assets is disabled",
            WarningCode.PDF_LLM_EXTRACTION_DISABLED: "PDF extraction is disabled (enable asset_processing.pdf strategies)",
            WarningCode.PDF_EMPTY_EXTRACTION: "PDF extraction produced no text",
            WarningCode.EXTRACTION_EMPTY: f"Extraction for {asset.kind} asset produced no text",
            WarningCode.IMAGE_NO_MULTIMODAL_AND_NO_CAPTION: (
                "Image skipped: embedding provider cannot embed images and no caption was provided"
            ),
        }
        return f"{messages.get(code, code.value)} (asset {asset.asset_id})"

    async def _run_extractor(
        self,
        extractor: AssetExtractor,
        asset: AssetInput,
        outcome: AssetOutcome,
    ) -> ExtractionResult | None:
        """Run one extractor; ``None`` means it failed and the failure was recorded."""
        self._emit("extractor:start", asset_id=asset.asset_id, extractor=extractor.name)
        started = time.perf_counter()
        timeout_ms = self.config.extractor_timeout_ms
        try:
            result = await asyncio.wait_for(
                extractor.extract(asset, self.ctx),
                timeout_ms / 1000 if timeout_ms else None,
            )
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            self._emit(
                "extractor:error",
                asset_id=asset.asset_id,
                extractor=extractor.name,
                error=str(exc) or type(exc).__name__,
                duration_ms=duration_ms,
            )
            stage = "fetch" if isinstance(exc, AssetFetchError) else "extract"
            self._record_error(outcome, asset, exc, stage=stage, extractor=extractor.name)
            return None

        self._emit(
            "extractor:success",
            asset_id=asset.asset_id,
            extractor=extractor.name,
            item_count=len(result.non_empty),
            duration_ms=(time.perf_counter() - started) * 1000,
        )
        return result

    def _add_items(
        self,
        outcome: AssetOutcome,
        extractor: AssetExtractor,
        items: list[ExtractedTextItem],
        result: ExtractionResult,
    ) -> None:
        base_meta = {**asset_metadata(outcome.asset, self.ctx.metadata), **result.metadata}
        for item in items:
            meta: Metadata = {**base_meta, "extractor": extractor.name, "extractor_label": item.label}
            if item.confidence is not None:
                meta["confidence"] = item.confidence
            if item.page_range is not None:
                meta["page_range"] = list(item.page_range)
            if item.time_range_sec is not None:
                meta["time_range_sec"] = list(item.time_range_sec)

            for piece in self.chunker(item.content, self.options):
                outcome.drafts.append(
                    ChunkDraft(
                        content=piece.content,
                        token_count=piece.token_count,
                        metadata=meta,
                        unit=TextUnit(piece.content),
                    )
                )

    def _record_error(
        self,
        outcome: AssetOutcome,
        asset: AssetInput,
        exc: Exception,
        *,
        stage: Literal["fetch", "extract"],
        extractor: str | None = None,
    ) -> None:
        where = f"{extractor} " if extractor else ""
        message = f"Asset {asset.asset_id} {where}{stage} failed: {str(exc) or type(exc).__name__}"
        warning = IngestWarning.for_asset(WarningCode.PROCESSING_ERROR, message, asset, stage=stage)
        if warning_is_fatal(warning.code, self.config):
            raise error_for(warning) from exc
        logger.warning("%s", message, exc_info=exc)
        self._warn(outcome, warning)

    def _warn(self, outcome: AssetOutcome, warning: IngestWarning) -> None:
        outcome.warnings.append(enforce(warning, self.config))

    def _emit(self, type: str, **data) -> None:  # noqa: A002
        if self.scope is not None:
            self.scope.child(type, **data)
