"""Image download for the vision stage.

Validates content-type and image integrity before the bytes are handed to
a model.
"""

from __future__ import annotations

import io
from dataclasses import dataclass

import httpx
from PIL import Image

from shelfcopy.errors import GenerationError

_FORMAT_MIME = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "GIF": "image/gif",
    "WEBP": "image/webp",
}


@dataclass(frozen=True)
class FetchedImage:
    data: bytes
    mime_type: str


async def fetch_image(client: httpx.AsyncClient, url: str, timeout: float = 30) -> FetchedImage:
    """Fetch and validate a single image using the given HTTP client."""
    try:
        response = await client.get(url, timeout=timeout, follow_redirects=True)
    except httpx.TimeoutException as exc:
        raise GenerationError(f"Timeout downloading image: {url[:100]}", retryable=True) from exc
    except httpx.RequestError as exc:
        raise GenerationError(
            f"Network error downloading image: {url[:100]}: {type(exc).__name__}",
            retryable=True,
        ) from exc

    if response.status_code >= 400:
        # 429 and 5xx are worth retrying later; other 4xx are not
        retryable = response.status_code >= 500 or response.status_code == 429
        raise GenerationError(
            f"HTTP {response.status_code} downloading image: {url[:100]}",
            retryable=retryable,
        )

    content_type = response.headers.get("content-type", "")
    if content_type and not content_type.startswith("image/"):
        raise GenerationError(f"Expected image content-type, got: {content_type}")

    try:
        img = Image.open(io.BytesIO(response.content))
        img.load()  # Force full decode to catch truncation
    except Exception as exc:
        raise GenerationError(f"Downloaded image is corrupt: {url[:100]}") from exc

    mime_type = _FORMAT_MIME.get(img.format or "") or content_type.split(";")[0] or "image/jpeg"
    return FetchedImage(data=response.content, mime_type=mime_type)
