from contextlib import asynccontextmanager
from unittest.mock import MagicMock, patch

import aiohttp
import pytest

from instafetch.delivery.destination import Destination
from instafetch.delivery.streamer import DeliveryPath, deliver, select_asset, stream
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import (
    AssetKind,
    Candidate,
    ChildDescriptor,
    MediaDescriptor,
    MediaKind,
    ResolvedAsset,
    SourceStrategy,
)

PAGE = "https://www.instagram.com/p/ABC123/"
IMAGE_URL = "https://scontent.cdninstagram.com/v/abc.jpg"
VIDEO_URL = "https://scontent.cdninstagram.com/v/abc.mp4"


class MemoryDestination(Destination):
    """Collects delivered bytes and the committed headers."""

    def __init__(self) -> None:
        self.content_type: str | None = None
        self.filename: str | None = None
        self.body = bytearray()
        self.finished = False

    @property
    def headers_sent(self) -> bool:
        return self.content_type is not None

    async def begin(self, content_type: str, filename: str) -> None:
        self.content_type = content_type
        self.filename = filename

    async def write(self, chunk: bytes) -> None:
        self.body.extend(chunk)

    async def finish(self) -> None:
        self.finished = True


def _fake_direct(outcomes: dict, calls: list):
    """open_direct replacement: per-URL chunk list, or an exception to raise."""

    @asynccontextmanager
    async def fake(url):
        calls.append(url)
        outcome = outcomes[url]
        if isinstance(outcome, Exception):
            raise outcome

        async def iter_chunked(size):
            for chunk in outcome:
                if isinstance(chunk, Exception):
                    raise chunk
                yield chunk

        resp = MagicMock()
        resp.content.iter_chunked = iter_chunked
        yield resp

    return fake


def _fake_pipe(chunks: list, calls: list, error: Exception | None = None):
    """ytdlp_pipe replacement yielding fixed chunks, optionally failing at the end."""

    @asynccontextmanager
    async def fake(url, extra_args=None, playlist_item=None):
        calls.append((url, extra_args, playlist_item))

        async def gen(size):
            for chunk in chunks:
                yield chunk
            if error is not None:
                raise error

        pipe = MagicMock()
        pipe.chunks = gen
        yield pipe

    return fake


def _image(url: str = IMAGE_URL) -> MediaDescriptor:
    return MediaDescriptor(
        shortcode="ABC123",
        kind=MediaKind.IMAGE,
        source_strategy=SourceStrategy.THIRD_PARTY_API,
        page_url=PAGE,
        primary_image=Candidate(url=url),
    )


@pytest.fixture(autouse=True)
def no_auth():
    with patch("instafetch.delivery.streamer.ytdlp_auth_args", return_value=[]):
        yield


# ---------------------------------------------------------------------------
# Single assets
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_image_streams_directly():
    direct_calls, tool_calls = [], []
    destination = MemoryDestination()
    asset = ResolvedAsset(IMAGE_URL, AssetKind.IMAGE, PAGE)

    with (
        patch("instafetch.delivery.streamer.open_direct", _fake_direct({IMAGE_URL: [b"ab", b"cd"]}, direct_calls)),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([], tool_calls)),
    ):
        path = await stream(asset, destination)

    assert path == DeliveryPath.DIRECT
    assert bytes(destination.body) == b"abcd"
    assert destination.content_type == "image/jpeg"
    assert destination.filename == "image.jpg"
    assert destination.finished
    assert tool_calls == []


@pytest.mark.asyncio
async def test_image_cdn_403_falls_over_to_tool():
    tool_calls = []
    destination = MemoryDestination()
    asset = ResolvedAsset(IMAGE_URL, AssetKind.IMAGE, PAGE)
    refused = ResolutionError(ErrorKind.DOWNLOAD_FAILED, "CDN answered HTTP 403")

    with (
        patch("instafetch.delivery.streamer.open_direct", _fake_direct({IMAGE_URL: refused}, [])),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"jpegdata"], tool_calls)),
    ):
        path = await stream(asset, destination)

    assert path == DeliveryPath.TOOL
    assert bytes(destination.body) == b"jpegdata"
    assert tool_calls[0][0] == PAGE
    assert "--referer" in tool_calls[0][1]


@pytest.mark.asyncio
async def test_image_failure_without_page_url_is_download_failed():
    destination = MemoryDestination()
    asset = ResolvedAsset(IMAGE_URL, AssetKind.IMAGE)

    with patch(
        "instafetch.delivery.streamer.open_direct",
        _fake_direct({IMAGE_URL: aiohttp.ClientConnectionError("reset")}, []),
    ):
        with pytest.raises(ResolutionError) as exc_info:
            await stream(asset, destination)

    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED
    assert "Link might be expired or blocked" in str(exc_info.value)
    assert not destination.headers_sent


@pytest.mark.asyncio
async def test_failure_after_headers_is_not_retried():
    tool_calls = []
    destination = MemoryDestination()
    asset = ResolvedAsset(IMAGE_URL, AssetKind.IMAGE, PAGE)
    outcomes = {IMAGE_URL: [b"partial", aiohttp.ClientPayloadError("truncated")]}

    with (
        patch("instafetch.delivery.streamer.open_direct", _fake_direct(outcomes, [])),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"x"], tool_calls)),
    ):
        with pytest.raises(aiohttp.ClientPayloadError):
            await stream(asset, destination)

    assert destination.headers_sent
    assert bytes(destination.body) == b"partial"
    assert not destination.finished
    assert tool_calls == []


@pytest.mark.asyncio
async def test_video_goes_through_tool_on_page_url():
    tool_calls, direct_calls = [], []
    destination = MemoryDestination()
    asset = ResolvedAsset(VIDEO_URL, AssetKind.VIDEO, PAGE)

    with (
        patch("instafetch.delivery.streamer.open_direct", _fake_direct({}, direct_calls)),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"mp4", b"data"], tool_calls)),
    ):
        path = await stream(asset, destination)

    assert path == DeliveryPath.TOOL
    assert tool_calls[0][0] == PAGE
    assert direct_calls == []
    assert destination.content_type == "video/mp4"
    assert destination.filename == "video.mp4"
    assert bytes(destination.body) == b"mp4data"


@pytest.mark.asyncio
async def test_video_tool_failure_falls_back_to_direct_cdn_url():
    destination = MemoryDestination()
    asset = ResolvedAsset(VIDEO_URL, AssetKind.VIDEO, PAGE)
    failure = ResolutionError(ErrorKind.DOWNLOAD_FAILED, "yt-dlp pipe failed")

    with (
        patch("instafetch.delivery.streamer.open_direct", _fake_direct({VIDEO_URL: [b"cdn"]}, [])),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([], [], error=failure)),
    ):
        path = await stream(asset, destination)

    assert path == DeliveryPath.DIRECT
    assert bytes(destination.body) == b"cdn"


@pytest.mark.asyncio
async def test_video_tool_empty_output_without_fallback():
    destination = MemoryDestination()
    asset = ResolvedAsset(PAGE, AssetKind.VIDEO, PAGE)

    with patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([], [])):
        with pytest.raises(ResolutionError) as exc_info:
            await stream(asset, destination)

    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED


# ---------------------------------------------------------------------------
# Asset selection
# ---------------------------------------------------------------------------


def _carousel() -> MediaDescriptor:
    return MediaDescriptor(
        shortcode="ABC123",
        kind=MediaKind.CAROUSEL,
        source_strategy=SourceStrategy.STRUCTURED_EXTRACTOR,
        page_url=PAGE,
        children=[
            ChildDescriptor(kind=AssetKind.IMAGE, primary_image=Candidate(url="https://cdn.example/1.jpg")),
            ChildDescriptor(
                kind=AssetKind.VIDEO,
                primary_image=Candidate(url="https://cdn.example/2.jpg"),
                primary_video=Candidate(url="https://cdn.example/2.mp4"),
            ),
        ],
    )


def test_select_asset_carousel_item():
    asset = select_asset(_carousel(), 1)

    assert asset.url == "https://cdn.example/2.mp4"
    assert asset.kind == AssetKind.VIDEO
    assert asset.original_page_url == PAGE
    assert asset.playlist_item == 2


@pytest.mark.parametrize("index", [None, -1, 2])
def test_select_asset_carousel_bad_index(index):
    with pytest.raises(ResolutionError) as exc_info:
        select_asset(_carousel(), index)

    assert exc_info.value.kind == ErrorKind.INVALID_URL


def test_select_asset_video_hint_promotes_poster_only_result():
    asset = select_asset(_image(), video_hint=True)

    assert asset.kind == AssetKind.VIDEO
    assert asset.url == PAGE


def test_select_asset_plain_image():
    asset = select_asset(_image())

    assert asset.kind == AssetKind.IMAGE
    assert asset.url == IMAGE_URL


@pytest.mark.asyncio
async def test_deliver_carousel_without_index_archives():
    destination = MemoryDestination()

    with patch("instafetch.delivery.streamer.pack_carousel") as mock_pack:
        mock_pack.return_value = 2
        path = await deliver(_carousel(), destination)

    assert path == DeliveryPath.ARCHIVE
    mock_pack.assert_awaited_once()


@pytest.mark.asyncio
async def test_deliver_carousel_video_item_selects_its_entry():
    tool_calls = []
    destination = MemoryDestination()

    with patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"mp4"], tool_calls)):
        path = await deliver(_carousel(), destination, item_index=1)

    assert path == DeliveryPath.TOOL
    url, _, playlist_item = tool_calls[0]
    assert url == PAGE
    assert playlist_item == 2
    assert destination.filename == "video.mp4"


@pytest.mark.asyncio
async def test_carousel_image_fallback_selects_its_entry():
    tool_calls = []
    destination = MemoryDestination()
    refused = ResolutionError(ErrorKind.DOWNLOAD_FAILED, "CDN answered HTTP 403")

    with (
        patch(
            "instafetch.delivery.streamer.open_direct",
            _fake_direct({"https://cdn.example/1.jpg": refused}, []),
        ),
        patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"jpeg"], tool_calls)),
    ):
        path = await deliver(_carousel(), destination, item_index=0)

    assert path == DeliveryPath.TOOL
    assert tool_calls[0][0] == PAGE
    assert tool_calls[0][2] == 1


@pytest.mark.asyncio
async def test_single_video_does_not_select_an_entry():
    tool_calls = []
    asset = ResolvedAsset(VIDEO_URL, AssetKind.VIDEO, PAGE)

    with patch("instafetch.delivery.streamer.ytdlp_pipe", _fake_pipe([b"mp4"], tool_calls)):
        await stream(asset, MemoryDestination())

    assert tool_calls[0][2] is None
