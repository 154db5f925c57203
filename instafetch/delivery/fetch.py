"""Direct CDN fetches with browser-like headers.

Instagram's image CDN accepts plain GETs as long as they look like they come
from a browser on instagram.com; anything other than a 200 is a failure.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import aiohttp
import structlog

from instafetch.config import settings
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import AssetKind

logger = structlog.get_logger()

USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)
REFERER = "https://www.instagram.com/"

CDN_HEADERS: dict[str, str] = {
    "User-Agent": USER_AGENT,
    "Referer": REFERER,
    "Accept": "*/*",
}

_CONTENT_TYPES = {
    "mp4": "video/mp4",
    "jpg": "image/jpeg",
    "webp": "image/webp",
    "png": "image/png",
    "heic": "image/heic",
}


def asset_extension(url: str, kind: AssetKind) -> str:
    if kind == AssetKind.VIDEO:
        return "mp4"
    path = urlparse(url).path.lower()
    for ext in ("webp", "png", "heic"):
        if path.endswith(f".{ext}"):
            return ext
    return "jpg"


def content_type_for(ext: str) -> str:
    return _CONTENT_TYPES.get(ext, "application/octet-stream")


def _timeout() -> aiohttp.ClientTimeout:
    # No total limit: large videos may legitimately stream for minutes
    return aiohttp.ClientTimeout(
        total=None,
        sock_connect=settings.download_timeout_seconds,
        sock_read=settings.download_timeout_seconds,
    )


@asynccontextmanager
async def open_direct(url: str) -> AsyncIterator[aiohttp.ClientResponse]:
    """Open a GET on a CDN URL; raise DOWNLOAD_FAILED unless it answers 200."""
    async with aiohttp.ClientSession() as session:
        async with session.get(url, headers=CDN_HEADERS, timeout=_timeout()) as resp:
            if resp.status != 200:
                raise ResolutionError(
                    ErrorKind.DOWNLOAD_FAILED, f"CDN answered HTTP {resp.status}"
                )
            yield resp


async def fetch_bytes(url: str) -> bytes:
    """Download a whole asset into memory, refusing anything over max_file_size_mb."""
    max_bytes = settings.max_file_size_mb * 1024 * 1024
    chunks: list[bytes] = []
    size = 0
    async with open_direct(url) as resp:
        async for chunk in resp.content.iter_chunked(settings.stream_chunk_size):
            size += len(chunk)
            if size > max_bytes:
                logger.warning("media_too_large", url=url, limit_mb=settings.max_file_size_mb)
                raise ResolutionError(ErrorKind.DOWNLOAD_FAILED, "asset exceeds size limit")
            chunks.append(chunk)
    if not chunks:
        raise ResolutionError(ErrorKind.DOWNLOAD_FAILED, "CDN returned an empty body")
    return b"".join(chunks)
