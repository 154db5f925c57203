from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

from instafetch.errors import ErrorKind, ResolutionError

BASE_URL = "https://www.instagram.com"


class LinkKind(StrEnum):
    POST = "post"
    REEL = "reel"
    TV = "tv"
    STORY = "story"


@dataclass(frozen=True)
class PostTarget:
    """A classified Instagram link, ready to be handed to the resolvers."""

    url: str
    kind: LinkKind
    shortcode: str | None = None

    @property
    def is_video_hint(self) -> bool:
        return self.kind in (LinkKind.REEL, LinkKind.TV)


# Order matters: first match wins for a given URL.
_LINK_PATTERNS: list[tuple[LinkKind, re.Pattern[str]]] = [
    (
        LinkKind.STORY,
        re.compile(
            r"https?://(?:www\.)?instagram\.com/stories/([\w.]+)/(\d+)",
            re.IGNORECASE,
        ),
    ),
    (
        LinkKind.REEL,
        re.compile(
            r"https?://(?:www\.)?instagram\.com/(?:[\w.]+/)?reels?/([A-Za-z0-9_-]+)",
            re.IGNORECASE,
        ),
    ),
    (
        LinkKind.TV,
        re.compile(
            r"https?://(?:www\.)?instagram\.com/(?:[\w.]+/)?tv/([A-Za-z0-9_-]+)",
            re.IGNORECASE,
        ),
    ),
    (
        LinkKind.POST,
        re.compile(
            r"https?://(?:www\.)?instagram\.com/(?:[\w.]+/)?p/([A-Za-z0-9_-]+)",
            re.IGNORECASE,
        ),
    ),
]

_SHORTCODE = re.compile(r"^[A-Za-z0-9_-]{5,64}$")

# Share/tracking params that break yt-dlp and the API lookups
_TRACKING_PARAMS = {"igsh", "igshid", "img_index", "hl"}


def _clean_url(url: str) -> str:
    """Strip tracking/share query params."""
    parsed = urlparse(url)
    if not parsed.query:
        return url
    clean_query = {
        k: v for k, v in parse_qs(parsed.query).items()
        if not k.startswith("utm_") and k not in _TRACKING_PARAMS
    }
    cleaned = parsed._replace(query=urlencode(clean_query, doseq=True) if clean_query else "")
    return urlunparse(cleaned)


def canonical_post_url(shortcode: str, kind: LinkKind = LinkKind.POST) -> str:
    segment = {LinkKind.REEL: "reel", LinkKind.TV: "tv"}.get(kind, "p")
    return f"{BASE_URL}/{segment}/{shortcode}/"


def classify_link(text: str) -> PostTarget:
    """Classify an Instagram URL (or a bare shortcode) into a PostTarget.

    Raises ResolutionError(INVALID_URL) for anything else.
    """
    value = text.strip().rstrip(".,;:!?)\"'")
    if _SHORTCODE.match(value):
        return PostTarget(url=canonical_post_url(value), kind=LinkKind.POST, shortcode=value)

    value = _clean_url(value)
    for kind, pattern in _LINK_PATTERNS:
        match = pattern.search(value)
        if match is None:
            continue
        if kind == LinkKind.STORY:
            username, story_id = match.group(1), match.group(2)
            return PostTarget(
                url=f"{BASE_URL}/stories/{username}/{story_id}/",
                kind=kind,
            )
        shortcode = match.group(1)
        return PostTarget(url=canonical_post_url(shortcode, kind), kind=kind, shortcode=shortcode)

    raise ResolutionError(ErrorKind.INVALID_URL, f"Not a supported Instagram link: {text!r}")
