from __future__ import annotations

import asyncio
import time

import structlog

from instafetch.config import settings
from instafetch.errors import ErrorKind, ResolutionError, most_specific
from instafetch.resolvers.base import MediaDescriptor, ResolutionStrategy
from instafetch.utils.link_detector import PostTarget, classify_link

logger = structlog.get_logger()


def default_strategies() -> list[ResolutionStrategy]:
    """Cheapest first: yt-dlp, then the paid API, then a full browser."""
    from instafetch.resolvers import STRATEGIES

    return [strategy_cls() for strategy_cls in STRATEGIES]


class Resolver:
    """Runs the strategies in order under one global deadline.

    The first descriptor wins. A terminal failure (the post is gone) stops the
    chain immediately; otherwise every failure just advances to the next
    strategy, and exhaustion surfaces the most specific error seen.
    """

    def __init__(
        self,
        strategies: list[ResolutionStrategy] | None = None,
        deadline_seconds: float | None = None,
    ) -> None:
        self._strategies = strategies if strategies is not None else default_strategies()
        self._deadline = (
            deadline_seconds if deadline_seconds is not None else settings.resolve_deadline_seconds
        )

    async def resolve_media(self, target: PostTarget | str) -> MediaDescriptor:
        if isinstance(target, str):
            target = classify_link(target)

        try:
            async with asyncio.timeout(self._deadline):
                return await self._run_chain(target)
        except TimeoutError:
            logger.error("resolve_deadline_exceeded", url=target.url, deadline_s=self._deadline)
            raise ResolutionError(
                ErrorKind.TIMEOUT, f"resolution exceeded {self._deadline}s"
            ) from None

    async def _run_chain(self, target: PostTarget) -> MediaDescriptor:
        seen: list[ErrorKind] = []

        for strategy in self._strategies:
            if not strategy.available:
                logger.info("strategy_skipped", strategy=strategy.name, url=target.url)
                continue

            start = time.monotonic()
            try:
                descriptor = await strategy.resolve(target)
            except ResolutionError as exc:
                duration_ms = int((time.monotonic() - start) * 1000)
                seen.append(exc.kind)
                logger.warning(
                    "strategy_failed",
                    strategy=strategy.name,
                    url=target.url,
                    duration_ms=duration_ms,
                    error_kind=exc.kind,
                    error=str(exc),
                )
                if exc.is_terminal:
                    logger.info("resolve_short_circuit", url=target.url, error_kind=exc.kind)
                    raise
                continue
            except Exception as exc:
                duration_ms = int((time.monotonic() - start) * 1000)
                seen.append(ErrorKind.DOWNLOAD_FAILED)
                logger.warning(
                    "strategy_crashed",
                    strategy=strategy.name,
                    url=target.url,
                    duration_ms=duration_ms,
                    error=repr(exc),
                )
                continue

            duration_ms = int((time.monotonic() - start) * 1000)
            logger.info(
                "media_resolved",
                strategy=strategy.name,
                url=target.url,
                kind=descriptor.kind,
                duration_ms=duration_ms,
                diagnostic=descriptor.diagnostic,
            )
            return descriptor

        kind = most_specific(seen)
        logger.error("all_strategies_failed", url=target.url, error_kind=kind)
        raise ResolutionError(kind, "Failed to fetch media from all available methods.")


async def resolve_media(target: PostTarget | str) -> MediaDescriptor:
    """Resolve a shortcode or Instagram URL with the default strategy chain."""
    return await Resolver().resolve_media(target)
