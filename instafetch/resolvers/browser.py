from __future__ import annotations

import time
from pathlib import Path

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from instafetch.config import settings
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import MediaDescriptor, ResolutionStrategy, SourceStrategy
from instafetch.resolvers.normalize import normalize_page_snapshot
from instafetch.resolvers.page_data import PageSnapshot, detect_page_block
from instafetch.utils.cookies import load_cookies
from instafetch.utils.link_detector import PostTarget

logger = structlog.get_logger()

_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/131.0.0.0 Safari/537.36"
)

# Sandboxing must be off inside most containers
_LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--window-size=1280,800",
]

_HIDE_WEBDRIVER = "Object.defineProperty(navigator, 'webdriver', {get: () => undefined});"

# Runs inside the page; everything it returns must be JSON-serialisable
_CAPTURE_SCRIPT = """
() => {
    const safe = (fn) => { try { return fn(); } catch (e) { return null; } };
    const plain = (value) => safe(() => value ? JSON.parse(JSON.stringify(value)) : null);
    return {
        additionalData: plain(window.__additionalDataLoaded),
        sharedData: plain(window._sharedData),
        scripts: Array.from(document.querySelectorAll('script')).map(s => s.textContent || ''),
        videos: Array.from(document.querySelectorAll('video')).map(v => ({
            src: v.currentSrc || v.src || (v.querySelector('source') || {}).src || '',
            width: v.videoWidth || 0,
            height: v.videoHeight || 0,
        })),
        images: Array.from(document.querySelectorAll('img')).map(i => ({
            src: i.currentSrc || i.src || '',
            width: i.naturalWidth || 0,
            height: i.naturalHeight || 0,
        })),
    };
}
"""


def _dbg(event: str, **kwargs: object) -> None:
    """Log at info level when debug_mode is on, otherwise debug."""
    if settings.debug_mode:
        logger.info(event, **kwargs)
    else:
        logger.debug(event, **kwargs)


class BrowserRenderStrategy(ResolutionStrategy):
    """Headless Chromium: render the post and mine the page for media.

    One browser per attempt, always closed on the way out.
    """

    @property
    def name(self) -> SourceStrategy:
        return SourceStrategy.BROWSER_RENDER

    async def resolve(self, target: PostTarget) -> MediaDescriptor:
        async with async_playwright() as playwright:
            browser = await playwright.chromium.launch(headless=True, args=_LAUNCH_ARGS)
            page: Page | None = None
            try:
                context = await browser.new_context(
                    user_agent=_USER_AGENT,
                    viewport={"width": 1280, "height": 800},
                    locale="en-US",
                )
                await context.add_init_script(_HIDE_WEBDRIVER)
                cookies = [c.to_playwright() for c in load_cookies()]
                if cookies:
                    await context.add_cookies(cookies)

                page = await context.new_page()
                page.set_default_navigation_timeout(
                    settings.browser_navigation_timeout_seconds * 1000
                )
                _dbg("browser_goto", url=target.url, cookies=len(cookies))
                await page.goto(target.url, wait_until="domcontentloaded")

                # No reliable "data loaded" signal exists; give the client a fixed settle time
                await page.wait_for_timeout(settings.browser_settle_seconds * 1000)

                snapshot = await self._capture(page)
                _dbg(
                    "browser_snapshot",
                    url=snapshot.url,
                    scripts=len(snapshot.scripts),
                    videos=len(snapshot.dom_videos),
                    images=len(snapshot.dom_images),
                )
                return self._interpret(snapshot, target)

            except ResolutionError as exc:
                if exc.kind == ErrorKind.DOWNLOAD_FAILED and page is not None:
                    await self._persist_diagnostics(page, target)
                raise
            except PlaywrightTimeoutError as exc:
                if page is not None:
                    await self._persist_diagnostics(page, target)
                raise ResolutionError(
                    ErrorKind.DOWNLOAD_FAILED, f"browser timed out: {exc}", strategy=self.name
                ) from exc
            except PlaywrightError as exc:
                if page is not None:
                    await self._persist_diagnostics(page, target)
                raise ResolutionError(
                    ErrorKind.DOWNLOAD_FAILED, f"browser error: {exc}", strategy=self.name
                ) from exc
            finally:
                await browser.close()

    def _interpret(self, snapshot: PageSnapshot, target: PostTarget) -> MediaDescriptor:
        """Normalize the snapshot, or explain why the page carried no media."""
        try:
            return normalize_page_snapshot(snapshot, target.shortcode, target.url)
        except ResolutionError as exc:
            blocked = detect_page_block(snapshot.html, snapshot.url)
            if blocked is not None:
                raise ResolutionError(
                    blocked, f"page blocked: {blocked}", strategy=self.name
                ) from exc
            raise ResolutionError(
                ErrorKind.DOWNLOAD_FAILED,
                "no media found in rendered page",
                strategy=self.name,
            ) from exc

    @staticmethod
    async def _capture(page: Page) -> PageSnapshot:
        data = await page.evaluate(_CAPTURE_SCRIPT)
        return PageSnapshot(
            url=page.url,
            html=await page.content(),
            additional_data=data.get("additionalData"),
            shared_data=data.get("sharedData"),
            scripts=data.get("scripts") or [],
            dom_videos=data.get("videos") or [],
            dom_images=data.get("images") or [],
        )

    @staticmethod
    async def _persist_diagnostics(page: Page, target: PostTarget) -> None:
        """Save a screenshot and the raw markup for offline debugging."""
        debug_dir = Path(settings.debug_dir)
        stem = f"fail_{target.shortcode or target.kind}_{int(time.time())}"
        try:
            debug_dir.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(debug_dir / f"{stem}.png"), full_page=True)
            (debug_dir / f"{stem}.html").write_text(await page.content(), encoding="utf-8")
        except (PlaywrightError, OSError) as exc:
            logger.warning("browser_diagnostics_failed", url=target.url, error=str(exc))
            return
        logger.info("browser_diagnostics_saved", url=target.url, path=str(debug_dir / stem))
