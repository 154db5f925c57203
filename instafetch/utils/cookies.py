"""Read the Netscape-format cookies.txt shared by yt-dlp and the browser.

The file is only ever read here; refreshing it is an operator task.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

import structlog

from instafetch.config import settings

logger = structlog.get_logger()


@dataclass
class Cookie:
    domain: str
    path: str
    secure: bool
    expires: int | None
    name: str
    value: str

    def to_playwright(self) -> dict:
        cookie: dict = {
            "name": self.name,
            "value": self.value,
            "domain": self.domain,
            "path": self.path or "/",
            "secure": self.secure,
        }
        if self.expires:
            cookie["expires"] = self.expires
        return cookie


def cookies_path() -> Path | None:
    """Configured cookies file, or None when unset or missing on disk."""
    if not settings.cookies_file:
        return None
    path = Path(settings.cookies_file)
    return path if path.is_file() else None


def parse_cookies(content: str) -> list[Cookie]:
    """Parse cookies.txt lines: domain, flag, path, secure, expiry, name, value."""
    cookies: list[Cookie] = []
    for line in content.splitlines():
        # curl marks HttpOnly cookies with this prefix on an otherwise normal line
        if line.startswith("#HttpOnly_"):
            line = line[len("#HttpOnly_"):]
        if line.startswith("#") or not line.strip():
            continue
        parts = line.split("\t")
        if len(parts) < 7:
            continue
        try:
            expires = int(parts[4]) or None
        except ValueError:
            expires = None
        cookies.append(
            Cookie(
                domain=parts[0],
                path=parts[2],
                secure=parts[3].upper() == "TRUE",
                expires=expires,
                name=parts[5],
                value=parts[6].strip(),
            )
        )
    return cookies


def load_cookies() -> list[Cookie]:
    path = cookies_path()
    if path is None:
        return []
    try:
        return parse_cookies(path.read_text(encoding="utf-8"))
    except OSError as exc:
        logger.warning("cookies_unreadable", path=str(path), error=str(exc))
        return []


def ytdlp_auth_args() -> list[str]:
    """Authentication flags for yt-dlp: cookies file first, then username/password."""
    path = cookies_path()
    if path is not None:
        return ["--cookies", str(path)]
    if settings.ig_username and settings.ig_password:
        return ["-u", settings.ig_username, "-p", settings.ig_password]
    return []
