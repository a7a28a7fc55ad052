"""Tests for resolving the request body into image bytes."""

import asyncio

import pytest

from core.errors import DecodeError, ImageDownloadError, InvalidRequestError
from services import image_source
from services.image_source import MAX_DOWNLOAD_BYTES, download_image, resolve_image_bytes
from tests.helpers import FakeResponse, FakeSession, image_base64, image_bytes, make_image


URL = "https://cdn.test/photo.png"


class TestDownloadImage:

    @pytest.mark.asyncio
    async def test_returns_body(self):
        raw = image_bytes(make_image(20, 20))
        session = FakeSession([FakeResponse(200, raw=raw)])

        assert await download_image(session, URL) == raw
        assert session.calls[0]["method"] == "GET"

    @pytest.mark.asyncio
    async def test_declared_oversize_rejected_before_reading(self):
        response = FakeResponse(200, raw=b"x" * 1024, content_length=5 * 1024 ** 3)
        session = FakeSession([response])

        with pytest.raises(ImageDownloadError, match="too large"):
            await download_image(session, URL)

        assert response.content.bytes_read == 0

    @pytest.mark.asyncio
    async def test_undeclared_oversize_stops_streaming_at_limit(self, monkeypatch):
        monkeypatch.setattr(image_source, "MAX_DOWNLOAD_BYTES", 100 * 1024)
        monkeypatch.setattr(image_source, "DOWNLOAD_CHUNK_BYTES", 16 * 1024)
        response = FakeResponse(200, raw=b"x" * (1024 * 1024))
        response.content_length = None
        session = FakeSession([response])

        with pytest.raises(ImageDownloadError, match="too large"):
            await download_image(session, URL)

        assert response.content.bytes_read <= 100 * 1024 + 16 * 1024

    @pytest.mark.asyncio
    async def test_body_at_limit_accepted(self):
        response = FakeResponse(200, raw=b"x" * MAX_DOWNLOAD_BYTES)
        session = FakeSession([response])

        assert len(await download_image(session, URL)) == MAX_DOWNLOAD_BYTES

    @pytest.mark.asyncio
    async def test_non_200_rejected(self):
        session = FakeSession([FakeResponse(404, body="missing")])
        with pytest.raises(ImageDownloadError, match="404"):
            await download_image(session, URL)

    @pytest.mark.asyncio
    async def test_empty_body_rejected(self):
        session = FakeSession([FakeResponse(200, raw=b"")])
        with pytest.raises(ImageDownloadError, match="empty"):
            await download_image(session, URL)

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = FakeSession([asyncio.TimeoutError()])
        with pytest.raises(ImageDownloadError, match="timed out"):
            await download_image(session, URL)

    @pytest.mark.asyncio
    async def test_non_http_scheme_rejected(self):
        session = FakeSession()
        with pytest.raises(ImageDownloadError):
            await download_image(session, "file:///etc/passwd")
        assert session.calls == []


class TestResolveImageBytes:

    @pytest.mark.asyncio
    async def test_base64_wins_over_url(self):
        img = make_image(10, 10)
        session = FakeSession()

        raw = await resolve_image_bytes(session, image_base64(img), URL)

        assert raw == image_bytes(img)
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_nothing_provided(self):
        with pytest.raises(InvalidRequestError):
            await resolve_image_bytes(FakeSession(), None, None)

    @pytest.mark.asyncio
    async def test_bad_base64(self):
        with pytest.raises(DecodeError):
            await resolve_image_bytes(FakeSession(), "abc", None)
