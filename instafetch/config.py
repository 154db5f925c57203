from __future__ import annotations

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

_PLACEHOLDER_KEYS = {"", "PASTE_YOUR_KEY_HERE", "changeme"}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=os.environ.get("ENV_FILE", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # HTTP server
    host: str = "0.0.0.0"
    port: int = 3001

    # Session state for yt-dlp and the headless browser (Netscape cookies.txt)
    cookies_file: str | None = "cookies.txt"
    ig_username: str | None = None
    ig_password: str | None = None

    # Third-party API (RapidAPI)
    rapidapi_key: str | None = None
    rapidapi_host: str = "instagram-scraper-20251.p.rapidapi.com"

    # External tools
    ytdlp_binary: str = "yt-dlp"

    # Timeouts
    extractor_timeout_seconds: float = 45
    api_timeout_seconds: float = 15
    api_backoff_retries: int = 1
    api_backoff_base_seconds: float = 1.0
    browser_navigation_timeout_seconds: float = 60
    browser_settle_seconds: float = 4
    resolve_deadline_seconds: float = 120
    download_timeout_seconds: int = 30

    # Delivery
    max_file_size_mb: int = 100
    stream_chunk_size: int = 64 * 1024

    # Diagnostics dumped by the browser strategy on unexplained failures
    debug_dir: str = "debug"

    # Logging
    log_level: str = "INFO"

    # Debug mode: verbose per-step logging in resolvers
    debug_mode: bool = False

    @property
    def has_rapidapi_key(self) -> bool:
        return bool(self.rapidapi_key) and self.rapidapi_key not in _PLACEHOLDER_KEYS


settings = Settings()
