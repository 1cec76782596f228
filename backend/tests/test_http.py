"""Tests for image download and validation."""

from __future__ import annotations

import io

import httpx
import pytest
from PIL import Image

from shelfcopy.errors import GenerationError
from shelfcopy.utils.http import fetch_image


def _jpeg_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), "red").save(buf, format="JPEG")
    return buf.getvalue()


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFetchImage:
    @pytest.mark.asyncio
    async def test_valid_image(self) -> None:
        data = _jpeg_bytes()
        async with _client(
            lambda r: httpx.Response(200, content=data, headers={"content-type": "image/jpeg"})
        ) as client:
            image = await fetch_image(client, "https://cdn.test/a.jpg")
        assert image.data == data
        assert image.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_mime_from_decoded_format(self) -> None:
        """A mislabeled JPEG is reported by its real format."""
        data = _jpeg_bytes()
        async with _client(
            lambda r: httpx.Response(200, content=data, headers={"content-type": "image/png"})
        ) as client:
            image = await fetch_image(client, "https://cdn.test/a.png")
        assert image.mime_type == "image/jpeg"

    @pytest.mark.asyncio
    async def test_not_found_not_retryable(self) -> None:
        async with _client(lambda r: httpx.Response(404)) as client:
            with pytest.raises(GenerationError, match="HTTP 404") as exc_info:
                await fetch_image(client, "https://cdn.test/missing.jpg")
        assert exc_info.value.retryable is False

    @pytest.mark.asyncio
    async def test_server_error_retryable(self) -> None:
        async with _client(lambda r: httpx.Response(503)) as client:
            with pytest.raises(GenerationError) as exc_info:
                await fetch_image(client, "https://cdn.test/a.jpg")
        assert exc_info.value.retryable is True

    @pytest.mark.asyncio
    async def test_wrong_content_type(self) -> None:
        async with _client(
            lambda r: httpx.Response(200, text="<html/>", headers={"content-type": "text/html"})
        ) as client:
            with pytest.raises(GenerationError, match="content-type"):
                await fetch_image(client, "https://cdn.test/a.jpg")

    @pytest.mark.asyncio
    async def test_corrupt_image(self) -> None:
        async with _client(
            lambda r: httpx.Response(
                200, content=b"not an image", headers={"content-type": "image/jpeg"}
            )
        ) as client:
            with pytest.raises(GenerationError, match="corrupt"):
                await fetch_image(client, "https://cdn.test/a.jpg")

    @pytest.mark.asyncio
    async def test_network_error(self) -> None:
        def boom(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(boom) as client:
            with pytest.raises(GenerationError, match="Network error") as exc_info:
                await fetch_image(client, "https://cdn.test/a.jpg")
        assert exc_info.value.retryable is True
