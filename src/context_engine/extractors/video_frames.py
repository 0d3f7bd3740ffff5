"""Video frame sampling with per-frame vision extraction (``video:frames``).

``ffmpeg`` samples frames at ``sample_fps``; each JPEG frame is sent to the
multimodal chat model with the configured prompt.  Worker-only, like
``pdf:ocr``.
"""

from __future__ import annotations

import logging
import re
import tempfile
from pathlib import Path
from typing import Any

from context_engine.extractors.base import ExtractedTextItem, ExtractionResult, ExtractorContext, cap_text
from context_engine.extractors.llm import LlmExtractor, ModelFactory, data_url
from context_engine.extractors.process import run_command
from context_engine.ingestion.asset_config import VideoFramesConfig
from context_engine.ingestion.fetch import FetchedAsset, get_asset_bytes
from context_engine.models import AssetInput

logger = logging.getLogger(__name__)

_FRAME_FILE = re.compile(r"^frame-(\d+)\.jpg$")


def frame_images(directory: Path) -> list[tuple[int, Path]]:
    """Sampled frames in *directory*, ordered by frame number."""
    frames = []
    for path in directory.iterdir():
        match = _FRAME_FILE.match(path.name)
        if match:
            frames.append((int(match.group(1)), path))
    return sorted(frames)


class VideoFramesExtractor(LlmExtractor):
    default_media_type = "video/mp4"

    def __init__(self, *, model_factory: ModelFactory | None = None) -> None:
        super().__init__("video:frames", model_factory=model_factory)

    def supports(self, asset: AssetInput, ctx: ExtractorContext) -> bool:
        return asset.kind == "video" and super().supports(asset, ctx)

    def config(self, ctx: ExtractorContext) -> VideoFramesConfig:
        return ctx.asset_processing.video.frames

    def content_block(self, fetched: FetchedAsset) -> dict[str, Any]:
        return {"type": "image_url", "image_url": {"url": data_url(fetched)}}

    async def extract(self, asset: AssetInput, ctx: ExtractorContext) -> ExtractionResult:
        cfg = self.config(ctx)
        fetched = await get_asset_bytes(
            asset.data,
            ctx.asset_processing.fetch,
            max_bytes=cfg.max_bytes,
            default_media_type=self.default_media_type,
        )
        fps = max(0.001, cfg.sample_fps)
        max_frames = max(1, cfg.max_frames)

        items: list[ExtractedTextItem] = []
        budget = cfg.max_output_chars
        with tempfile.TemporaryDirectory(prefix="context-engine-video-frames-") as tmp:
            workdir = Path(tmp)
            video_path = workdir / "input.mp4"
            video_path.write_bytes(fetched.data)
            await run_command(
                cfg.ffmpeg_path,
                [
                    "-hide_banner", "-loglevel", "error",
                    "-i", str(video_path),
                    "-vf", f"fps={fps}",
                    "-vframes", str(max_frames),
                    str(workdir / "frame-%03d.jpg"),
                ],
                workdir,
            )

            frames = frame_images(workdir)[:max_frames]
            for number, image in frames:
                if budget <= 0:
                    break
                frame = FetchedAsset(data=image.read_bytes(), media_type="image/jpeg", filename=image.name)
                text = cap_text(await self.ask(cfg, self.content_block(frame)), budget)
                if not text:
                    continue
                budget -= len(text)
                start = (number - 1) / fps
                items.append(
                    ExtractedTextItem(label=f"frame-{number}", content=text, time_range_sec=(start, start + 1 / fps))
                )

        logger.debug("video:frames read %d of %d frames from %s", len(items), len(frames), asset.asset_id)
        return ExtractionResult(texts=items, diagnostics={"model": cfg.model, "frames": len(frames)})
