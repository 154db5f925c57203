"""Locate Instagram's structured media record inside a rendered page.

Each layer is an independent, pure parse over a PageSnapshot so it can be
tested against a fixed fixture. Layers run in priority order:

1. ``window.__additionalDataLoaded`` (client-side data cache)
2. ``window._sharedData`` (legacy shared-data object)
3. JSON embedded in script tags, found by key signature
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field

import structlog

from instafetch.errors import ErrorKind

logger = structlog.get_logger()

_SCRIPT_SIGNATURES = ("shortcode_media", "xdt_api", "reels_media", "reel_media")
_BLOCK_START = re.compile(r'\{"(?:xdt_api|graphql|reels_media|require|data)')
_MAX_DEPTH = 40

_LOGIN_MARKERS = ("Login • Instagram", "Welcome back to Instagram")
_CHALLENGE_MARKERS = ("Suspicious activity", "Verify your account", "checkpoint_required")
_RATE_LIMIT_MARKERS = (
    "Wait a few minutes before you try again",
    "Please wait a few minutes",
    "Too Many Requests",
)
_NOT_FOUND_MARKERS = (
    "Sorry, this page isn't available",
    "The link you followed may be broken",
)


@dataclass
class PageSnapshot:
    """Everything the browser strategy captured from one rendered page."""

    url: str
    html: str = ""
    additional_data: dict | None = None
    shared_data: dict | None = None
    scripts: list[str] = field(default_factory=list)
    dom_videos: list[dict] = field(default_factory=list)
    dom_images: list[dict] = field(default_factory=list)


def _first(value: object) -> dict | None:
    if isinstance(value, list) and value and isinstance(value[0], dict):
        return value[0]
    return None


def _items_head(container: object) -> dict | None:
    """container.items[0] when container is a dict, container[0].items[0] for lists."""
    if isinstance(container, list):
        container = _first(container)
    if isinstance(container, dict):
        return _first(container.get("items"))
    return None


def _find_record(obj: object, depth: int = 0) -> dict | None:
    """Recursively search parsed JSON for a known media record key."""
    if depth > _MAX_DEPTH:
        return None
    if isinstance(obj, dict):
        web_info = obj.get("xdt_api__v1__media__shortcode__web_info")
        if isinstance(web_info, dict):
            item = _first(web_info.get("items"))
            if item:
                return item
        for key in ("shortcode_media", "xdt_shortcode_media"):
            if isinstance(obj.get(key), dict):
                return obj[key]
        for key in ("reels_media", "xdt_api__v1__feed__reels_media__reels_media"):
            item = _items_head(obj.get(key))
            if item:
                return item
        feed = obj.get("xdt_api__v1__feed__reels_media")
        if isinstance(feed, dict):
            item = _items_head(feed.get("reels_media"))
            if item:
                return item
        for value in obj.values():
            if isinstance(value, (dict, list)):
                found = _find_record(value, depth + 1)
                if found:
                    return found
    elif isinstance(obj, list):
        for value in obj:
            if isinstance(value, (dict, list)):
                found = _find_record(value, depth + 1)
                if found:
                    return found
    return None


def _json_documents(text: str) -> Iterator[object]:
    """Whole-text JSON first, then every decodable block starting at a known key."""
    try:
        yield json.loads(text)
        return
    except json.JSONDecodeError:
        pass

    decoder = json.JSONDecoder()
    for match in _BLOCK_START.finditer(text):
        try:
            obj, _ = decoder.raw_decode(text, match.start())
        except json.JSONDecodeError:
            continue
        yield obj


def from_additional_data(snapshot: PageSnapshot) -> dict | None:
    data = snapshot.additional_data
    if not isinstance(data, dict):
        return None
    for value in data.values():
        if not isinstance(value, dict):
            continue
        graphql = value.get("graphql")
        if isinstance(graphql, dict) and isinstance(graphql.get("shortcode_media"), dict):
            return graphql["shortcode_media"]
        item = _first(value.get("items"))
        if item:
            return item
    return None


def from_shared_data(snapshot: PageSnapshot) -> dict | None:
    data = snapshot.shared_data
    if not isinstance(data, dict):
        return None
    post_page = _first((data.get("entry_data") or {}).get("PostPage"))
    if post_page is None:
        return None
    media = (post_page.get("graphql") or {}).get("shortcode_media")
    return media if isinstance(media, dict) else None


def from_scripts(snapshot: PageSnapshot) -> dict | None:
    for text in snapshot.scripts:
        if not text or not any(sig in text for sig in _SCRIPT_SIGNATURES):
            continue
        for document in _json_documents(text):
            record = _find_record(document)
            if record:
                return record
    return None


_LAYERS: list[tuple[str, Callable[[PageSnapshot], dict | None]]] = [
    ("additional_data", from_additional_data),
    ("shared_data", from_shared_data),
    ("scripts", from_scripts),
]


def locate_media_record(snapshot: PageSnapshot) -> dict | None:
    """Run the layers in priority order and return the first record found."""
    for layer_name, layer in _LAYERS:
        record = layer(snapshot)
        if record:
            logger.debug("page_record_located", layer=layer_name, url=snapshot.url)
            return record
    return None


def detect_page_block(html: str, url: str) -> ErrorKind | None:
    """Classify pages that carry no media because Instagram refused to serve it."""
    if "/accounts/login" in url or any(marker in html for marker in _LOGIN_MARKERS):
        return ErrorKind.AUTH_REQUIRED
    if "/challenge" in url or any(marker in html for marker in _CHALLENGE_MARKERS):
        return ErrorKind.ACCOUNT_CHALLENGED
    if any(marker in html for marker in _RATE_LIMIT_MARKERS):
        return ErrorKind.RATE_LIMITED
    if any(marker in html for marker in _NOT_FOUND_MARKERS):
        return ErrorKind.NOT_FOUND
    return None
