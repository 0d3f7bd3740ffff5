"""Unit tests for guarded URL asset fetching."""

from __future__ import annotations

from collections.abc import Iterator

import httpx
import pytest

from context_engine.errors import AssetFetchError
from context_engine.ingestion import fetch
from context_engine.ingestion.asset_config import FetchConfig
from context_engine.models import AssetBytes, AssetUrl


@pytest.fixture()
def requests_seen() -> Iterator[list[httpx.Request]]:
    """Install a mock transport serving a small PNG and record requests."""
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.path == "/missing.png":
            return httpx.Response(404)
        if request.url.path == "/big.bin":
            return httpx.Response(200, content=b"x" * 64, headers={"content-type": "application/octet-stream"})
        return httpx.Response(200, content=b"\x89PNG", headers={"content-type": "image/png; charset=binary"})

    fetch.set_transport_override(httpx.MockTransport(handler))
    try:
        yield seen
    finally:
        fetch.set_transport_override(None)


# ── URL rules ──────────────────────────────────────────────────────────


class TestCheckUrl:
    @pytest.mark.parametrize(
        "url",
        [
            "http://example.com/a.png",
            "https://localhost/a.png",
            "https://127.0.0.1/a.png",
            "https://10.0.0.5/a.png",
            "https://192.168.1.20/a.png",
            "https://[::1]/a.png",
        ],
    )
    def test_disallowed_urls(self, url: str) -> None:
        with pytest.raises(AssetFetchError):
            fetch.check_url(url, FetchConfig())

    def test_allowlist(self) -> None:
        cfg = FetchConfig(allowed_hosts=["cdn.example.com"])
        fetch.check_url("https://cdn.example.com/a.png", cfg)
        with pytest.raises(AssetFetchError, match="allowlisted"):
            fetch.check_url("https://other.example.com/a.png", cfg)

    def test_disabled(self) -> None:
        with pytest.raises(AssetFetchError, match="disabled"):
            fetch.check_url("https://cdn.example.com/a.png", FetchConfig(enabled=False))


# ── Downloads ──────────────────────────────────────────────────────────


class TestFetchUrl:
    @pytest.mark.asyncio
    async def test_fetch_returns_body_and_media_type(self, requests_seen: list[httpx.Request]) -> None:
        body, media_type = await fetch.fetch_url("https://cdn.example.com/a.png", FetchConfig(), max_bytes=1024)
        assert body == b"\x89PNG"
        assert media_type == "image/png"

    @pytest.mark.asyncio
    async def test_header_layering(self, requests_seen: list[httpx.Request]) -> None:
        cfg = FetchConfig(headers={"x-team": "docs", "user-agent": "custom-agent"})
        await fetch.fetch_url(
            "https://cdn.example.com/a.png", cfg, max_bytes=1024, headers={"authorization": "Bearer t"}
        )
        sent = requests_seen[0].headers
        assert sent["user-agent"] == "custom-agent"
        assert sent["x-team"] == "docs"
        assert sent["authorization"] == "Bearer t"

    @pytest.mark.asyncio
    async def test_default_user_agent(self, requests_seen: list[httpx.Request]) -> None:
        await fetch.fetch_url("https://cdn.example.com/a.png", FetchConfig(), max_bytes=1024)
        assert requests_seen[0].headers["user-agent"] == fetch.USER_AGENT

    @pytest.mark.asyncio
    async def test_http_error_status(self, requests_seen: list[httpx.Request]) -> None:
        with pytest.raises(AssetFetchError, match="404"):
            await fetch.fetch_url("https://cdn.example.com/missing.png", FetchConfig(), max_bytes=1024)

    @pytest.mark.asyncio
    async def test_body_over_limit(self, requests_seen: list[httpx.Request]) -> None:
        with pytest.raises(AssetFetchError, match="too large"):
            await fetch.fetch_url("https://cdn.example.com/big.bin", FetchConfig(), max_bytes=16)

    @pytest.mark.asyncio
    async def test_disallowed_url_makes_no_request(self, requests_seen: list[httpx.Request]) -> None:
        with pytest.raises(AssetFetchError):
            await fetch.fetch_url("http://cdn.example.com/a.png", FetchConfig(), max_bytes=1024)
        assert requests_seen == []


class TestGetAssetBytes:
    @pytest.mark.asyncio
    async def test_inline_bytes(self) -> None:
        fetched = await fetch.get_asset_bytes(
            AssetBytes(data=b"abc", media_type="Text/Plain; charset=utf-8", filename="a.txt"),
            FetchConfig(),
            max_bytes=10,
        )
        assert fetched.data == b"abc"
        assert fetched.media_type == "text/plain"
        assert fetched.filename == "a.txt"

    @pytest.mark.asyncio
    async def test_inline_bytes_over_limit(self) -> None:
        with pytest.raises(AssetFetchError):
            await fetch.get_asset_bytes(AssetBytes(data=b"abcdef"), FetchConfig(), max_bytes=3)

    @pytest.mark.asyncio
    async def test_declared_media_type_wins(self, requests_seen: list[httpx.Request]) -> None:
        fetched = await fetch.get_asset_bytes(
            AssetUrl(url="https://cdn.example.com/a.png", media_type="image/webp"),
            FetchConfig(),
            max_bytes=1024,
        )
        assert fetched.media_type == "image/webp"
