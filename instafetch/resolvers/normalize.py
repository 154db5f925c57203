"""Map every strategy's raw output onto one MediaDescriptor shape.

yt-dlp JSON, the paid API's item records and the browser's page snapshot all
describe the same post differently. Each normalizer gathers every size
variant it can find into Candidate lists and lets the scorer choose. Missing
fields are never an error by themselves; only a post with no usable asset at
all is reported as UNPARSABLE_RESPONSE.
"""

from __future__ import annotations

from urllib.parse import urlparse

import structlog

from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import (
    AssetKind,
    Candidate,
    ChildDescriptor,
    MediaDescriptor,
    MediaKind,
    SourceStrategy,
)
from instafetch.resolvers.page_data import PageSnapshot, locate_media_record
from instafetch.resolvers.scoring import select_best, select_largest
from instafetch.utils.opengraph import parse_opengraph

logger = structlog.get_logger()

_VIDEO_EXTS = {"mp4", "webm", "mkv", "mov", "m4v"}
_IMAGE_EXTS = {"jpg", "jpeg", "png", "webp", "heic"}
_CDN_HOSTS = ("cdninstagram.com", "fbcdn.net")

# DOM images smaller than this are avatars and UI chrome
_MIN_DOM_IMAGE_WIDTH = 320


def _int(value: object) -> int | None:
    try:
        number = int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None
    return number if number > 0 else None


def _url_ext(url: str) -> str:
    path = urlparse(url).path
    return path.rsplit(".", 1)[-1].lower() if "." in path else ""


def _dedupe(candidates: list[Candidate]) -> list[Candidate]:
    """Drop repeated URLs, keeping the variant that declares dimensions."""
    by_url: dict[str, Candidate] = {}
    for candidate in candidates:
        if not candidate.url:
            continue
        existing = by_url.get(candidate.url)
        if existing is None or (candidate.has_dimensions and not existing.has_dimensions):
            by_url[candidate.url] = candidate
    return list(by_url.values())


def _pick_image(candidates: list[Candidate], reference_ratio: float | None) -> Candidate | None:
    candidates = _dedupe(candidates)
    return select_best(candidates, reference_ratio) if candidates else None


def _pick_video(candidates: list[Candidate]) -> Candidate | None:
    candidates = _dedupe(candidates)
    return select_largest(candidates) if candidates else None


def _single(
    child: ChildDescriptor,
    *,
    shortcode: str | None,
    page_url: str,
    strategy: SourceStrategy,
    direct: bool = False,
) -> MediaDescriptor:
    if child.kind == AssetKind.VIDEO:
        return MediaDescriptor(
            shortcode=shortcode,
            kind=MediaKind.VIDEO,
            source_strategy=strategy,
            page_url=page_url,
            primary_video=child.primary_video,
            requires_direct_fetch=direct,
            diagnostic=_describe(child.primary_video),
            poster=child.primary_image,
        )
    return MediaDescriptor(
        shortcode=shortcode,
        kind=MediaKind.IMAGE,
        source_strategy=strategy,
        page_url=page_url,
        primary_image=child.primary_image,
        requires_direct_fetch=direct,
        diagnostic=_describe(child.primary_image),
    )


def _carousel(
    children: list[ChildDescriptor],
    *,
    shortcode: str | None,
    page_url: str,
    strategy: SourceStrategy,
    direct: bool = False,
) -> MediaDescriptor:
    return MediaDescriptor(
        shortcode=shortcode,
        kind=MediaKind.CAROUSEL,
        source_strategy=strategy,
        page_url=page_url,
        children=children,
        requires_direct_fetch=direct,
        diagnostic=f"carousel of {len(children)}",
    )


def _describe(candidate: Candidate | None) -> str | None:
    if candidate is None:
        return None
    size = f"{candidate.width}x{candidate.height}" if candidate.has_dimensions else "unknown size"
    return f"{size} via {candidate.source or 'url'}"


def _unparsable(strategy: SourceStrategy, detail: str) -> ResolutionError:
    return ResolutionError(
        ErrorKind.UNPARSABLE_RESPONSE, f"{strategy}: {detail}", strategy=strategy
    )


# ---------------------------------------------------------------------------
# Instagram item nodes (API responses and in-page records share this schema)
# ---------------------------------------------------------------------------


def node_reference_ratio(node: dict) -> float | None:
    """The item's own aspect ratio, when it declares one."""
    dims = node.get("dimensions") or {}
    width = _int(dims.get("width")) or _int(node.get("original_width"))
    height = _int(dims.get("height")) or _int(node.get("original_height"))
    if width and height:
        return width / height
    return None


def node_image_candidates(node: dict) -> list[Candidate]:
    """Every image rendition a graphql or v1 item exposes."""
    candidates: list[Candidate] = []

    for c in (node.get("image_versions2") or {}).get("candidates") or []:
        if isinstance(c, dict):
            candidates.append(
                Candidate(
                    url=c.get("url") or c.get("src") or "",
                    width=_int(c.get("width")),
                    height=_int(c.get("height")),
                    source="image_versions2",
                )
            )

    for r in node.get("display_resources") or []:
        if isinstance(r, dict):
            candidates.append(
                Candidate(
                    url=r.get("src") or r.get("url") or "",
                    width=_int(r.get("config_width") or r.get("width")),
                    height=_int(r.get("config_height") or r.get("height")),
                    source="display_resources",
                )
            )

    if node.get("display_url"):
        dims = node.get("dimensions") or {}
        candidates.append(
            Candidate(
                url=node["display_url"],
                width=_int(dims.get("width")),
                height=_int(dims.get("height")),
                source="display_url",
            )
        )

    if node.get("thumbnail_src"):
        candidates.append(Candidate(url=node["thumbnail_src"], source="thumbnail_src"))

    return [c for c in candidates if c.url]


def node_video_candidates(node: dict) -> list[Candidate]:
    candidates: list[Candidate] = []
    for v in node.get("video_versions") or []:
        if isinstance(v, dict) and v.get("url"):
            candidates.append(
                Candidate(
                    url=v["url"],
                    width=_int(v.get("width")),
                    height=_int(v.get("height")),
                    source="video_versions",
                )
            )
    if node.get("video_url"):
        dims = node.get("dimensions") or {}
        candidates.append(
            Candidate(
                url=node["video_url"],
                width=_int(dims.get("width")),
                height=_int(dims.get("height")),
                source="video_url",
            )
        )
    return candidates


def _node_children(node: dict) -> list[dict]:
    edges = (node.get("edge_sidecar_to_children") or {}).get("edges")
    if edges:
        return [e.get("node") or e for e in edges if isinstance(e, dict)]
    return [c for c in node.get("carousel_media") or [] if isinstance(c, dict)]


def _child_from_node(node: dict) -> ChildDescriptor | None:
    image = _pick_image(node_image_candidates(node), node_reference_ratio(node))
    video = _pick_video(node_video_candidates(node))
    if video is not None:
        return ChildDescriptor(kind=AssetKind.VIDEO, primary_image=image, primary_video=video)
    if image is not None:
        return ChildDescriptor(kind=AssetKind.IMAGE, primary_image=image)
    return None


def descriptor_from_node(
    node: dict,
    *,
    shortcode: str | None,
    page_url: str,
    strategy: SourceStrategy,
    direct: bool = False,
) -> MediaDescriptor:
    """Build a descriptor from one graphql/v1 item record."""
    shortcode = node.get("shortcode") or node.get("code") or shortcode

    child_nodes = _node_children(node)
    if child_nodes:
        children = [c for c in map(_child_from_node, child_nodes) if c is not None]
        if not children:
            raise _unparsable(strategy, "carousel without usable children")
        if len(children) < len(child_nodes):
            logger.warning(
                "carousel_children_dropped",
                strategy=strategy,
                shortcode=shortcode,
                dropped=len(child_nodes) - len(children),
            )
        return _carousel(
            children, shortcode=shortcode, page_url=page_url, strategy=strategy, direct=direct
        )

    child = _child_from_node(node)
    if child is None:
        raise _unparsable(strategy, "item has no image or video renditions")
    return _single(child, shortcode=shortcode, page_url=page_url, strategy=strategy, direct=direct)


# ---------------------------------------------------------------------------
# Structured extractor (yt-dlp)
# ---------------------------------------------------------------------------


def _ytdlp_formats(entry: dict) -> list[dict]:
    return [f for f in entry.get("formats") or [] if isinstance(f, dict) and f.get("url")]


def _has_codec(value: object) -> bool:
    return bool(value) and value != "none"


def _ytdlp_is_video(entry: dict) -> bool:
    if entry.get("ext") in _VIDEO_EXTS or _has_codec(entry.get("vcodec")):
        return True
    if any(_has_codec(f.get("vcodec")) for f in _ytdlp_formats(entry)):
        return True
    url = entry.get("url")
    return bool(url) and _url_ext(url) in _VIDEO_EXTS


def _ytdlp_video_candidates(entry: dict) -> list[Candidate]:
    formats = [f for f in _ytdlp_formats(entry) if _has_codec(f.get("vcodec"))]
    progressive = [f for f in formats if _has_codec(f.get("acodec"))]

    candidates = [
        Candidate(
            url=f["url"],
            width=_int(f.get("width")),
            height=_int(f.get("height")),
            source="formats",
        )
        for f in progressive
    ]
    url = entry.get("url")
    if url and _url_ext(url) not in _IMAGE_EXTS:
        candidates.append(
            Candidate(
                url=url,
                width=_int(entry.get("width")),
                height=_int(entry.get("height")),
                source="url",
            )
        )
    if not candidates:
        # Video-only DASH renditions as a last resort
        candidates = [
            Candidate(
                url=f["url"],
                width=_int(f.get("width")),
                height=_int(f.get("height")),
                source="formats",
            )
            for f in formats
        ]
    return candidates


def _ytdlp_image_candidates(entry: dict) -> list[Candidate]:
    candidates = [
        Candidate(
            url=t.get("url") or "",
            width=_int(t.get("width")),
            height=_int(t.get("height")),
            source="thumbnails",
        )
        for t in entry.get("thumbnails") or []
        if isinstance(t, dict)
    ]
    if entry.get("thumbnail"):
        candidates.append(Candidate(url=entry["thumbnail"], source="thumbnail"))
    url = entry.get("url")
    if url and _url_ext(url) in _IMAGE_EXTS:
        candidates.append(
            Candidate(
                url=url,
                width=_int(entry.get("width")),
                height=_int(entry.get("height")),
                source="url",
            )
        )
    return [c for c in candidates if c.url]


def _ytdlp_ratio(entry: dict) -> float | None:
    width, height = _int(entry.get("width")), _int(entry.get("height"))
    return width / height if width and height else None


def _child_from_ytdlp(entry: dict) -> ChildDescriptor | None:
    image = _pick_image(_ytdlp_image_candidates(entry), _ytdlp_ratio(entry))
    if _ytdlp_is_video(entry):
        video = _pick_video(_ytdlp_video_candidates(entry))
        if video is not None:
            return ChildDescriptor(kind=AssetKind.VIDEO, primary_image=image, primary_video=video)
    if image is not None:
        return ChildDescriptor(kind=AssetKind.IMAGE, primary_image=image)
    return None


def normalize_extractor_output(info: dict, shortcode: str | None, page_url: str) -> MediaDescriptor:
    """Normalize `yt-dlp --dump-single-json` output."""
    strategy = SourceStrategy.STRUCTURED_EXTRACTOR

    entries = info.get("entries")
    if info.get("_type") == "playlist" and entries:
        children = [
            c for c in (_child_from_ytdlp(e) for e in entries if isinstance(e, dict))
            if c is not None
        ]
        if not children:
            raise _unparsable(strategy, "playlist without usable entries")
        return _carousel(children, shortcode=shortcode, page_url=page_url, strategy=strategy)

    child = _child_from_ytdlp(info)
    if child is None:
        raise _unparsable(strategy, "no video url or thumbnails in yt-dlp output")
    return _single(child, shortcode=shortcode, page_url=page_url, strategy=strategy)


# ---------------------------------------------------------------------------
# Third-party API
# ---------------------------------------------------------------------------


def _dig_api_item(payload: dict) -> dict | None:
    """Find the item record inside the provider's varying envelopes."""
    data = payload.get("data")
    items = payload.get("items")
    options: list[object] = [
        payload.get("item"),
        items[0] if isinstance(items, list) and items else None,
        data[0] if isinstance(data, list) and data else None,
    ]
    if isinstance(data, dict):
        nested = data.get("items")
        options += [
            data.get("item"),
            nested[0] if isinstance(nested, list) and nested else None,
            (data.get("xdt_shortcode_media") or data.get("shortcode_media")),
            data,
        ]
    options.append(payload)

    for option in options:
        if isinstance(option, dict) and _looks_like_item(option):
            return option
    return None


def _looks_like_item(node: dict) -> bool:
    return any(
        key in node
        for key in (
            "image_versions2",
            "video_versions",
            "display_url",
            "video_url",
            "carousel_media",
            "edge_sidecar_to_children",
        )
    )


def normalize_api_output(payload: dict, shortcode: str | None, page_url: str) -> MediaDescriptor:
    """Normalize a JSON body from any of the third-party API endpoint shapes."""
    strategy = SourceStrategy.THIRD_PARTY_API
    item = _dig_api_item(payload)
    if item is None:
        raise _unparsable(strategy, "no item record in API response")
    return descriptor_from_node(item, shortcode=shortcode, page_url=page_url, strategy=strategy)


# ---------------------------------------------------------------------------
# Browser rendering
# ---------------------------------------------------------------------------


def _is_cdn(url: str) -> bool:
    host = urlparse(url).netloc.lower()
    return any(host.endswith(cdn) for cdn in _CDN_HOSTS)


def _dom_child(snapshot: PageSnapshot) -> ChildDescriptor | None:
    """Last resort for stories: media elements as rendered."""
    videos = [
        Candidate(
            url=v.get("src") or "",
            width=_int(v.get("width")),
            height=_int(v.get("height")),
            source="dom",
        )
        for v in snapshot.dom_videos
    ]
    videos = [v for v in videos if v.url.startswith("http")]

    images = [
        Candidate(
            url=i.get("src") or "",
            width=_int(i.get("width")),
            height=_int(i.get("height")),
            source="dom",
        )
        for i in snapshot.dom_images
    ]
    images = [
        i for i in images
        if i.url.startswith("http") and _is_cdn(i.url) and (i.width or 0) >= _MIN_DOM_IMAGE_WIDTH
    ]

    image = _pick_image(images, None)
    video = _pick_video(videos)
    if video is not None:
        return ChildDescriptor(kind=AssetKind.VIDEO, primary_image=image, primary_video=video)
    if image is not None:
        return ChildDescriptor(kind=AssetKind.IMAGE, primary_image=image)
    return None


def normalize_page_snapshot(
    snapshot: PageSnapshot, shortcode: str | None, page_url: str
) -> MediaDescriptor:
    """Normalize what the browser captured: structured record, then og: tags, then DOM."""
    strategy = SourceStrategy.BROWSER_RENDER

    record = locate_media_record(snapshot)
    if record is not None:
        try:
            return descriptor_from_node(
                record, shortcode=shortcode, page_url=page_url, strategy=strategy, direct=True
            )
        except ResolutionError as exc:
            logger.debug("page_record_unusable", shortcode=shortcode, error=str(exc))

    og = parse_opengraph(snapshot.html)
    if og.has_media:
        image = Candidate(url=og.image, source="og:image") if og.image else None
        if og.video:
            child = ChildDescriptor(
                kind=AssetKind.VIDEO,
                primary_image=image,
                primary_video=Candidate(url=og.video, source="og:video"),
            )
        else:
            child = ChildDescriptor(kind=AssetKind.IMAGE, primary_image=image)
        return _single(child, shortcode=shortcode, page_url=page_url, strategy=strategy, direct=True)

    child = _dom_child(snapshot)
    if child is None:
        raise _unparsable(strategy, "no structured data, og: tags or media elements")
    return _single(child, shortcode=shortcode, page_url=page_url, strategy=strategy, direct=True)
