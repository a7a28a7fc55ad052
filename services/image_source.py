"""
Image source - resolves the request body into raw image bytes.
"""

import asyncio
from typing import Optional

import aiohttp
from loguru import logger

from core.errors import ImageDownloadError, InvalidRequestError
from core.image_normalizer import decode_base64_image


USER_AGENT = "Mozilla/5.0 (compatible; VisualSearch/1.0)"
MAX_DOWNLOAD_BYTES = 20 * 1024 * 1024
DOWNLOAD_CHUNK_BYTES = 64 * 1024


async def download_image(
    session: aiohttp.ClientSession,
    url: str,
    timeout: float = 10.0,
) -> bytes:
    """
    Fetch ``url`` with at most ``MAX_DOWNLOAD_BYTES`` held in memory.

    A declared Content-Length over the limit is rejected before any of the
    body is read; otherwise the body is streamed and abandoned as soon as it
    crosses the limit.
    """
    if not url.lower().startswith(("http://", "https://")):
        raise ImageDownloadError("image_url must be an http(s) URL")

    logger.info(f"Downloading image: {url[:100]}")
    headers = {"User-Agent": USER_AGENT, "Accept": "image/*"}

    try:
        async with session.get(
            url, headers=headers, timeout=aiohttp.ClientTimeout(total=timeout)
        ) as response:
            if response.status != 200:
                raise ImageDownloadError(f"Failed to download image: {response.status}")
            if response.content_length is not None and response.content_length > MAX_DOWNLOAD_BYTES:
                raise ImageDownloadError("Downloaded image is too large")

            body = bytearray()
            async for chunk in response.content.iter_chunked(DOWNLOAD_CHUNK_BYTES):
                body.extend(chunk)
                if len(body) > MAX_DOWNLOAD_BYTES:
                    raise ImageDownloadError("Downloaded image is too large")
    except asyncio.TimeoutError:
        raise ImageDownloadError(f"Image download timed out after {timeout}s")
    except aiohttp.ClientError as e:
        raise ImageDownloadError(f"Image download failed: {e}")

    if not body:
        raise ImageDownloadError("Downloaded image is empty")
    return bytes(body)


async def resolve_image_bytes(
    session: aiohttp.ClientSession,
    image_base64: Optional[str],
    image_url: Optional[str],
    timeout: float = 10.0,
) -> bytes:
    """Base64 payload wins over URL when both are present."""
    if image_base64:
        return decode_base64_image(image_base64)
    if image_url:
        return await download_image(session, image_url, timeout=timeout)
    raise InvalidRequestError("No image provided")
