from __future__ import annotations

import structlog

from instafetch.config import settings
from instafetch.errors import ResolutionError
from instafetch.resolvers.base import MediaDescriptor, ResolutionStrategy, SourceStrategy
from instafetch.resolvers.normalize import normalize_extractor_output
from instafetch.utils.cookies import ytdlp_auth_args
from instafetch.utils.link_detector import PostTarget
from instafetch.utils.ytdlp import ytdlp_info

logger = structlog.get_logger()


class StructuredExtractorStrategy(ResolutionStrategy):
    """yt-dlp metadata dump against the canonical post URL."""

    @property
    def name(self) -> SourceStrategy:
        return SourceStrategy.STRUCTURED_EXTRACTOR

    async def resolve(self, target: PostTarget) -> MediaDescriptor:
        auth_args = ytdlp_auth_args()
        logger.debug(
            "extractor_start",
            url=target.url,
            auth="cookies" if "--cookies" in auth_args else ("password" if auth_args else "anonymous"),
        )
        try:
            info = await ytdlp_info(
                target.url,
                extra_args=auth_args,
                timeout=settings.extractor_timeout_seconds,
            )
        except ResolutionError as exc:
            exc.strategy = self.name
            raise
        return normalize_extractor_output(info, target.shortcode, target.url)
