import io
import zipfile
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from instafetch.delivery.archive import pack_carousel
from instafetch.delivery.destination import Destination
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import AssetKind, Candidate, ChildDescriptor


class ChunkRecorder(Destination):
    def __init__(self) -> None:
        self.began: tuple[str, str] | None = None
        self.chunks: list[bytes] = []
        self.finished = False

    @property
    def headers_sent(self) -> bool:
        return self.began is not None

    async def begin(self, content_type: str, filename: str) -> None:
        self.began = (content_type, filename)

    async def write(self, chunk: bytes) -> None:
        self.chunks.append(chunk)

    async def finish(self) -> None:
        self.finished = True

    def archive(self) -> zipfile.ZipFile:
        return zipfile.ZipFile(io.BytesIO(b"".join(self.chunks)))


def _children() -> list[ChildDescriptor]:
    return [
        ChildDescriptor(kind=AssetKind.IMAGE, primary_image=Candidate(url="https://cdn.example/1.jpg")),
        ChildDescriptor(
            kind=AssetKind.VIDEO,
            primary_image=Candidate(url="https://cdn.example/2.jpg"),
            primary_video=Candidate(url="https://cdn.example/2.mp4"),
        ),
        ChildDescriptor(kind=AssetKind.IMAGE, primary_image=Candidate(url="https://cdn.example/3.webp")),
    ]


@pytest.mark.asyncio
async def test_pack_carousel_writes_every_child_in_order():
    bodies = {
        "https://cdn.example/1.jpg": b"one",
        "https://cdn.example/2.mp4": b"two" * 1000,
        "https://cdn.example/3.webp": b"three",
    }
    destination = ChunkRecorder()

    with patch(
        "instafetch.delivery.archive.fetch_bytes",
        new_callable=AsyncMock,
        side_effect=lambda url: bodies[url],
    ):
        packed = await pack_carousel(_children(), destination)

    assert packed == 3
    assert destination.began == ("application/zip", "carousel.zip")
    assert destination.finished

    archive = destination.archive()
    assert archive.namelist() == ["media_1.jpg", "media_2.mp4", "media_3.webp"]
    assert archive.read("media_2.mp4") == b"two" * 1000
    assert archive.testzip() is None


@pytest.mark.asyncio
async def test_pack_carousel_skips_failed_child_and_keeps_positions():
    async def fetch(url):
        if url == "https://cdn.example/2.mp4":
            raise ResolutionError(ErrorKind.DOWNLOAD_FAILED, "CDN answered HTTP 403")
        return url.encode()

    destination = ChunkRecorder()

    with patch("instafetch.delivery.archive.fetch_bytes", side_effect=fetch):
        packed = await pack_carousel(_children(), destination)

    assert packed == 2
    archive = destination.archive()
    assert archive.namelist() == ["media_1.jpg", "media_3.webp"]
    assert archive.read("media_3.webp") == b"https://cdn.example/3.webp"


@pytest.mark.asyncio
async def test_pack_carousel_streams_incrementally():
    destination = ChunkRecorder()

    with patch(
        "instafetch.delivery.archive.fetch_bytes",
        new_callable=AsyncMock,
        return_value=b"x" * 4096,
    ):
        await pack_carousel(_children(), destination)

    # One write per entry plus the central directory
    assert len(destination.chunks) == 4


@pytest.mark.asyncio
async def test_pack_carousel_all_failed_is_still_a_valid_archive():
    destination = ChunkRecorder()

    with patch(
        "instafetch.delivery.archive.fetch_bytes",
        new_callable=AsyncMock,
        side_effect=aiohttp.ClientConnectionError("reset"),
    ):
        packed = await pack_carousel(_children(), destination)

    assert packed == 0
    assert destination.archive().namelist() == []
    assert destination.finished
