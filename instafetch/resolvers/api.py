from __future__ import annotations

import asyncio

import aiohttp
import structlog

from instafetch.config import settings
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import MediaDescriptor, ResolutionStrategy, SourceStrategy
from instafetch.resolvers.normalize import normalize_api_output
from instafetch.utils.link_detector import PostTarget

logger = structlog.get_logger()

# The provider has renamed its routes more than once; all take ?shortcode=
_ENDPOINT_PATHS = ["/v1/post_info", "/post/info", "/v1/info", "/ig/info_2/"]

# Any of these top-level keys means the body is worth normalizing
_BODY_MARKERS = ("items", "item", "data", "shortcode")


class _RateLimited(Exception):
    pass


class ThirdPartyApiStrategy(ResolutionStrategy):
    """Paid RapidAPI Instagram scraper, tried across several endpoint shapes."""

    @property
    def name(self) -> SourceStrategy:
        return SourceStrategy.THIRD_PARTY_API

    @property
    def available(self) -> bool:
        return settings.has_rapidapi_key

    async def resolve(self, target: PostTarget) -> MediaDescriptor:
        if not target.shortcode:
            raise ResolutionError(
                ErrorKind.DOWNLOAD_FAILED,
                "API lookups need a post shortcode",
                strategy=self.name,
            )
        payload = await self._fetch(target.shortcode)
        return normalize_api_output(payload, target.shortcode, target.url)

    async def _fetch(self, shortcode: str) -> dict:
        """Return the first recognised JSON body across the endpoint shapes."""
        host = settings.rapidapi_host
        headers = {
            "x-rapidapi-key": settings.rapidapi_key or "",
            "x-rapidapi-host": host,
        }
        rate_limited = False

        async with aiohttp.ClientSession() as session:
            for path in _ENDPOINT_PATHS:
                endpoint = f"https://{host}{path}"
                try:
                    payload = await self._get_json(
                        session, endpoint, {"shortcode": shortcode}, headers
                    )
                except _RateLimited:
                    rate_limited = True
                    logger.warning("api_endpoint_rate_limited", endpoint=endpoint)
                    continue
                except (aiohttp.ClientError, TimeoutError, ValueError) as exc:
                    logger.warning("api_endpoint_failed", endpoint=endpoint, error=str(exc))
                    continue

                if isinstance(payload, dict) and any(payload.get(k) for k in _BODY_MARKERS):
                    logger.debug("api_endpoint_ok", endpoint=endpoint)
                    return payload
                logger.warning("api_endpoint_unrecognized_body", endpoint=endpoint)

        kind = ErrorKind.RATE_LIMITED if rate_limited else ErrorKind.DOWNLOAD_FAILED
        raise ResolutionError(
            kind, "API returned no usable data from any endpoint", strategy=self.name
        )

    @staticmethod
    async def _get_json(
        session: aiohttp.ClientSession,
        endpoint: str,
        params: dict[str, str],
        headers: dict[str, str],
    ) -> object:
        """GET one endpoint, backing off exponentially while it answers 429."""
        retries = max(settings.api_backoff_retries, 0)
        for attempt in range(retries + 1):
            async with session.get(
                endpoint,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=settings.api_timeout_seconds),
            ) as resp:
                if resp.status != 429:
                    resp.raise_for_status()
                    return await resp.json(content_type=None)
            if attempt < retries:
                delay = settings.api_backoff_base_seconds * (2 ** attempt)
                logger.info("api_backoff", endpoint=endpoint, delay_s=delay)
                await asyncio.sleep(delay)
        raise _RateLimited()
