"""Guarded download of URL assets.

Only ``https://`` URLs are fetched, loopback / private-range literals are
refused, an optional host allow-list applies, and the body is capped at
``max_bytes`` both by ``Content-Length`` and by the bytes actually read.
"""

from __future__ import annotations

import ipaddress
import logging
from dataclasses import dataclass
from urllib.parse import urlparse

import httpx

from context_engine.errors import AssetFetchError
from context_engine.ingestion.asset_config import FetchConfig
from context_engine.models import AssetBytes, AssetData

logger = logging.getLogger(__name__)

USER_AGENT = "context-engine/asset-fetch"

# Tests install an ``httpx.MockTransport`` here.
_HTTP_TRANSPORT_OVERRIDE: httpx.AsyncBaseTransport | None = None


def set_transport_override(transport: httpx.AsyncBaseTransport | None) -> None:
    global _HTTP_TRANSPORT_OVERRIDE
    _HTTP_TRANSPORT_OVERRIDE = transport


@dataclass(frozen=True)
class FetchedAsset:
    data: bytes
    media_type: str
    filename: str | None = None


def normalize_media_type(value: str | None) -> str | None:
    """``"Text/HTML; charset=utf-8"`` → ``"text/html"``."""
    if not value:
        return None
    primary = value.split(";", 1)[0].strip().lower()
    return primary or None


def ext_from_filename(filename: str | None) -> str | None:
    if not filename or "." not in filename:
        return None
    return filename.rsplit(".", 1)[1].strip().lower() or None


def is_disallowed_host(host: str) -> bool:
    h = host.lower().strip("[]")
    if h == "localhost" or h.endswith(".localhost"):
        return True
    try:
        ip = ipaddress.ip_address(h)
    except ValueError:
        return False
    return ip.is_loopback or ip.is_private or ip.is_unspecified or ip.is_link_local


def check_url(url: str, config: FetchConfig) -> None:
    """Raise :class:`AssetFetchError` when *url* may not be fetched under *config*."""
    if not config.enabled:
        raise AssetFetchError("Asset fetch disabled (asset_processing.fetch.enabled=False)")

    parsed = urlparse(url)
    if parsed.scheme != "https":
        raise AssetFetchError("Only https:// URLs are allowed for asset fetching")

    host = parsed.hostname or ""
    if not host or is_disallowed_host(host):
        raise AssetFetchError(f"Disallowed host for asset fetch: {host!r}")

    if config.allowed_hosts:
        allowed = {h.lower() for h in config.allowed_hosts}
        if host.lower() not in allowed:
            raise AssetFetchError(f"Host not allowlisted for asset fetch: {host}")


async def fetch_url(
    url: str,
    config: FetchConfig,
    *,
    max_bytes: int,
    headers: dict[str, str] | None = None,
) -> tuple[bytes, str | None]:
    """Download *url*; return ``(body, content_type)``."""
    check_url(url, config)

    request_headers = {"user-agent": USER_AGENT}
    for layer in (config.headers, headers or {}):
        request_headers.update({k.lower(): v for k, v in layer.items()})
    client_kwargs: dict = {"timeout": config.timeout_ms / 1000, "follow_redirects": False}
    if _HTTP_TRANSPORT_OVERRIDE is not None:
        client_kwargs["transport"] = _HTTP_TRANSPORT_OVERRIDE

    try:
        async with httpx.AsyncClient(**client_kwargs) as client:
            async with client.stream("GET", url, headers=request_headers) as response:
                if response.status_code >= 400:
                    raise AssetFetchError(
                        f"Asset fetch failed ({response.status_code} {response.reason_phrase})"
                    )

                declared = response.headers.get("content-length")
                if declared and declared.isdigit() and int(declared) > max_bytes:
                    raise AssetFetchError(
                        f"Asset too large (content-length {declared} > {max_bytes})"
                    )

                body = bytearray()
                async for block in response.aiter_bytes():
                    body.extend(block)
                    if len(body) > max_bytes:
                        raise AssetFetchError(f"Asset too large (> {max_bytes} bytes)")

                media_type = normalize_media_type(response.headers.get("content-type"))
    except httpx.HTTPError as exc:
        raise AssetFetchError(f"Asset fetch failed: {exc}") from exc

    logger.debug("Fetched %d bytes from %s", len(body), url)
    return bytes(body), media_type


async def get_asset_bytes(
    data: AssetData,
    config: FetchConfig,
    *,
    max_bytes: int,
    default_media_type: str = "application/octet-stream",
) -> FetchedAsset:
    """Return the asset's bytes, downloading them when the asset is a URL."""
    if isinstance(data, AssetBytes):
        if len(data.data) > max_bytes:
            raise AssetFetchError(f"Asset too large ({len(data.data)} > {max_bytes})")
        return FetchedAsset(
            data=data.data,
            media_type=normalize_media_type(data.media_type) or default_media_type,
            filename=data.filename,
        )

    body, fetched_type = await fetch_url(
        data.url,
        config,
        max_bytes=min(max_bytes, config.max_bytes),
        headers=data.headers,
    )
    return FetchedAsset(
        data=body,
        media_type=normalize_media_type(data.media_type) or fetched_type or default_media_type,
        filename=data.filename,
    )
