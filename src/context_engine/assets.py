"""Read asset provenance back out of retrieved chunks."""

from __future__ import annotations

from pydantic import BaseModel

from context_engine.models import AssetKind, Chunk


class ChunkAssetRef(BaseModel):
    """Where an asset-derived chunk came from."""

    asset_id: str
    asset_kind: AssetKind
    asset_uri: str | None = None
    asset_media_type: str | None = None
    extractor: str | None = None


def is_asset_chunk(chunk: Chunk) -> bool:
    """``True`` for chunks produced from an asset rather than the base text."""
    meta = chunk.metadata
    return isinstance(meta.get("asset_id"), str) and isinstance(meta.get("asset_kind"), str)


def get_chunk_asset_ref(chunk: Chunk) -> ChunkAssetRef | None:
    """Return the asset reference of *chunk*, or ``None`` for base-text chunks."""
    if not is_asset_chunk(chunk):
        return None
    meta = chunk.metadata
    return ChunkAssetRef(
        asset_id=meta["asset_id"],
        asset_kind=meta["asset_kind"],
        asset_uri=meta.get("asset_uri"),
        asset_media_type=meta.get("asset_media_type"),
        extractor=meta.get("extractor"),
    )
