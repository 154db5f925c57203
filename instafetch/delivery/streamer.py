"""Deliver a resolved asset (or a whole descriptor) to the client.

Videos always go through yt-dlp first: the video CDN rejects bare fetches of
the signed URL with 403 far more often than not. Images are fetched directly
and fall back to yt-dlp on the original page when the CDN refuses them. A
carousel item sent through yt-dlp is selected by its position in the post.

Headers are committed only when the first chunk is ready. After that point a
failure can only abort the connection; nothing upstream may write a JSON error.
"""

from __future__ import annotations

from enum import StrEnum

import aiohttp
import structlog

from instafetch.config import settings
from instafetch.delivery.archive import pack_carousel
from instafetch.delivery.destination import Destination
from instafetch.delivery.fetch import (
    REFERER,
    USER_AGENT,
    asset_extension,
    content_type_for,
    open_direct,
)
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import AssetKind, MediaDescriptor, MediaKind, ResolvedAsset
from instafetch.utils.cookies import ytdlp_auth_args
from instafetch.utils.ytdlp import ytdlp_pipe

logger = structlog.get_logger()


class DeliveryPath(StrEnum):
    DIRECT = "direct"
    TOOL = "yt-dlp"
    ARCHIVE = "archive"


async def _stream_direct(url: str, destination: Destination, filename: str, content_type: str) -> None:
    async with open_direct(url) as resp:
        async for chunk in resp.content.iter_chunked(settings.stream_chunk_size):
            if not destination.headers_sent:
                await destination.begin(content_type, filename)
            await destination.write(chunk)

    if not destination.headers_sent:
        raise ResolutionError(ErrorKind.DOWNLOAD_FAILED, "CDN returned an empty body")
    await destination.finish()


async def _stream_via_tool(
    page_url: str,
    destination: Destination,
    filename: str,
    content_type: str,
    playlist_item: int | None = None,
) -> None:
    extra_args = ["--user-agent", USER_AGENT, "--referer", REFERER, *ytdlp_auth_args()]
    async with ytdlp_pipe(page_url, extra_args=extra_args, playlist_item=playlist_item) as pipe:
        async for chunk in pipe.chunks(settings.stream_chunk_size):
            if not destination.headers_sent:
                await destination.begin(content_type, filename)
            await destination.write(chunk)

    if not destination.headers_sent:
        raise ResolutionError(ErrorKind.DOWNLOAD_FAILED, "yt-dlp produced no output")
    await destination.finish()


async def stream(asset: ResolvedAsset, destination: Destination) -> DeliveryPath:
    """Stream one asset; returns which path delivered it."""
    ext = asset_extension(asset.url, asset.kind)
    filename = f"{asset.kind}.{ext}"
    content_type = content_type_for(ext)

    if asset.kind == AssetKind.VIDEO:
        source = asset.original_page_url or asset.url
        item = asset.playlist_item if asset.original_page_url else None
        logger.info(
            "stream_route",
            path=DeliveryPath.TOOL,
            kind=asset.kind,
            url=source,
            playlist_item=item,
        )
        try:
            await _stream_via_tool(
                source, destination, filename, content_type, item
            )
            return DeliveryPath.TOOL
        except ResolutionError as exc:
            # A CDN URL mined from the page is still worth one direct attempt
            if destination.headers_sent or source == asset.url:
                raise
            logger.warning("tool_stream_failed", url=source, fallback=asset.url, error=str(exc))
        await _stream_direct(asset.url, destination, filename, content_type)
        return DeliveryPath.DIRECT

    logger.info("stream_route", path=DeliveryPath.DIRECT, kind=asset.kind, url=asset.url)
    try:
        await _stream_direct(asset.url, destination, filename, content_type)
        return DeliveryPath.DIRECT
    except (ResolutionError, aiohttp.ClientError, TimeoutError) as exc:
        if destination.headers_sent:
            logger.error("stream_aborted", path=DeliveryPath.DIRECT, url=asset.url, error=str(exc))
            raise
        if not asset.original_page_url:
            raise ResolutionError(
                ErrorKind.DOWNLOAD_FAILED,
                "Media download failed. Link might be expired or blocked.",
            ) from exc
        logger.warning(
            "direct_stream_failed",
            url=asset.url,
            fallback=asset.original_page_url,
            error=str(exc),
        )

    await _stream_via_tool(
        asset.original_page_url,
        destination,
        filename,
        content_type,
        asset.playlist_item,
    )
    return DeliveryPath.TOOL


def select_asset(
    descriptor: MediaDescriptor,
    item_index: int | None = None,
    *,
    video_hint: bool = False,
) -> ResolvedAsset:
    """Pick the single asset to deliver from a descriptor."""
    assets = descriptor.to_assets()
    if descriptor.kind == MediaKind.CAROUSEL:
        if item_index is None or not 0 <= item_index < len(assets):
            raise ResolutionError(
                ErrorKind.INVALID_URL, f"carousel has no item {item_index}"
            )
        return assets[item_index]

    asset = assets[0]
    # Reels and IGTV are videos even when a strategy only surfaced the poster frame
    if video_hint and asset.kind == AssetKind.IMAGE:
        return ResolvedAsset(
            url=descriptor.page_url,
            kind=AssetKind.VIDEO,
            original_page_url=descriptor.page_url,
        )
    return asset


async def deliver(
    descriptor: MediaDescriptor,
    destination: Destination,
    item_index: int | None = None,
    *,
    video_hint: bool = False,
) -> DeliveryPath:
    """Archive a whole carousel, or stream the one asset asked for."""
    if descriptor.kind == MediaKind.CAROUSEL and item_index is None:
        await pack_carousel(descriptor.children, destination)
        return DeliveryPath.ARCHIVE
    asset = select_asset(descriptor, item_index, video_hint=video_hint)
    return await stream(asset, destination)
