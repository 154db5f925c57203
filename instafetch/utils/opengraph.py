"""Extract Open Graph metadata (og:image, og:video, etc.) from rendered pages.

Used by the browser strategy when the page never exposes its structured
media record, which is common for logged-out sessions and some reels.
"""

from __future__ import annotations

import html as html_lib
import re
from dataclasses import dataclass

# Regex patterns for og: meta tags (handles both property= and name= variants,
# and both single and double quotes, and content before/after property)
_OG_PATTERN = re.compile(
    r'<meta\s+(?:[^>]*?)'
    r'(?:property|name)\s*=\s*["\']og:([\w:]+)["\']'
    r'[^>]*?content\s*=\s*["\']([^"\']*?)["\']',
    re.IGNORECASE | re.DOTALL,
)
_OG_PATTERN_REV = re.compile(
    r'<meta\s+(?:[^>]*?)'
    r'content\s*=\s*["\']([^"\']*?)["\']'
    r'[^>]*?(?:property|name)\s*=\s*["\']og:([\w:]+)["\']',
    re.IGNORECASE | re.DOTALL,
)


@dataclass
class OpenGraphData:
    image: str | None = None
    video: str | None = None
    title: str | None = None
    description: str | None = None
    site_name: str | None = None

    @property
    def has_media(self) -> bool:
        return bool(self.image or self.video)


def parse_opengraph(page_html: str) -> OpenGraphData:
    """Extract Open Graph meta tags from an HTML document."""
    found: dict[str, str] = {}

    # Try both orderings of property/content attributes
    for match in _OG_PATTERN.finditer(page_html):
        key, value = match.group(1).lower(), match.group(2)
        found.setdefault(key, value)

    for match in _OG_PATTERN_REV.finditer(page_html):
        value, key = match.group(1), match.group(2).lower()
        if key not in found:  # don't override
            found[key] = value

    def _get(*keys: str) -> str | None:
        for key in keys:
            if found.get(key):
                return html_lib.unescape(found[key])
        return None

    return OpenGraphData(
        image=_get("image", "image:secure_url", "image:url"),
        video=_get("video", "video:secure_url", "video:url"),
        title=_get("title"),
        description=_get("description"),
        site_name=_get("site_name"),
    )
