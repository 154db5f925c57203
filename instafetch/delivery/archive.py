from __future__ import annotations

import zipfile

import aiohttp
import structlog

from instafetch.delivery.destination import Destination
from instafetch.delivery.fetch import asset_extension, fetch_bytes
from instafetch.errors import ResolutionError
from instafetch.resolvers.base import ChildDescriptor

logger = structlog.get_logger()

ARCHIVE_NAME = "carousel.zip"


class _ArchiveBuffer:
    """Write-only sink for ZipFile.

    It has no tell/seek, so zipfile switches to data-descriptor mode and never
    rewinds; written bytes are drained to the destination after each entry.
    """

    def __init__(self) -> None:
        self._chunks: list[bytes] = []

    def write(self, data: bytes) -> int:
        self._chunks.append(bytes(data))
        return len(data)

    def flush(self) -> None:
        pass

    def drain(self) -> bytes:
        data = b"".join(self._chunks)
        self._chunks.clear()
        return data


async def _drain(buffer: _ArchiveBuffer, destination: Destination) -> None:
    data = buffer.drain()
    if data:
        await destination.write(data)


async def pack_carousel(children: list[ChildDescriptor], destination: Destination) -> int:
    """Stream every carousel child into one ZIP, in display order.

    Entries are named media_<position>.<ext> after the child's position in the
    carousel. A child that cannot be fetched is logged and skipped. Returns the
    number of entries written.
    """
    await destination.begin("application/zip", ARCHIVE_NAME)

    buffer = _ArchiveBuffer()
    archive = zipfile.ZipFile(buffer, mode="w", compression=zipfile.ZIP_DEFLATED)
    packed = 0
    try:
        for ordinal, child in enumerate(children, start=1):
            asset = child.best_asset
            if asset is None:
                logger.warning("carousel_item_empty", ordinal=ordinal)
                continue

            try:
                data = await fetch_bytes(asset.url)
            except (ResolutionError, aiohttp.ClientError, TimeoutError) as exc:
                logger.warning("carousel_item_failed", ordinal=ordinal, url=asset.url, error=str(exc))
                continue

            name = f"media_{ordinal}.{asset_extension(asset.url, child.kind)}"
            archive.writestr(name, data)
            await _drain(buffer, destination)
            packed += 1
    finally:
        archive.close()

    await _drain(buffer, destination)
    await destination.finish()
    logger.info("carousel_packed", items=len(children), packed=packed)
    return packed
