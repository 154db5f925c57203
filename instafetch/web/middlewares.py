from __future__ import annotations

import time
import uuid
from datetime import datetime, timezone
from typing import Awaitable, Callable

import structlog
from aiohttp import web

from instafetch.errors import ErrorKind, ResolutionError

logger = structlog.get_logger()

Handler = Callable[[web.Request], Awaitable[web.StreamResponse]]

# One fixed (status, message) per kind; the JSON body always carries the code too
ERROR_RESPONSES: dict[ErrorKind, tuple[int, str]] = {
    ErrorKind.NOT_FOUND: (404, "Post not found - it might be deleted or private"),
    ErrorKind.AUTH_REQUIRED: (401, "Instagram requires a logged-in session for this content"),
    ErrorKind.ACCOUNT_CHALLENGED: (
        403,
        "The session account is held at a verification challenge",
    ),
    ErrorKind.RATE_LIMITED: (
        429,
        "Instagram is blocking requests - try again in a few minutes",
    ),
    ErrorKind.TIMEOUT: (504, "Download process timed out"),
    ErrorKind.UNPARSABLE_RESPONSE: (502, "Could not understand the media data Instagram returned"),
    ErrorKind.NO_CANDIDATES: (500, "No downloadable rendition was found"),
    ErrorKind.DOWNLOAD_FAILED: (500, "Failed to fetch media from all available methods"),
    ErrorKind.INVALID_URL: (400, "Invalid Instagram URL format"),
}


def error_response(kind: ErrorKind) -> web.Response:
    status, message = ERROR_RESPONSES.get(kind, (500, "Unknown error occurred"))
    return web.json_response(
        {
            "error": message,
            "code": kind.value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status=status,
    )


@web.middleware
async def logging_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Log every request with structured context."""
    start = time.monotonic()
    with structlog.contextvars.bound_contextvars(request_id=uuid.uuid4().hex[:8]):
        logger.info(
            "request_received",
            method=request.method,
            path=request.path,
            remote=request.remote,
        )
        try:
            return await handler(request)
        finally:
            duration_ms = int((time.monotonic() - start) * 1000)
            logger.debug("request_handled", path=request.path, duration_ms=duration_ms)


@web.middleware
async def error_middleware(request: web.Request, handler: Handler) -> web.StreamResponse:
    """Turn failures into JSON error bodies, but only while nothing was streamed."""
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except Exception as exc:
        destination = request.get("destination")
        if destination is not None and destination.headers_sent:
            # Bytes already went out: the only option left is dropping the connection
            logger.error("stream_failed_after_headers", path=request.path, error=str(exc))
            raise

        if isinstance(exc, ResolutionError):
            logger.warning("request_failed", path=request.path, error_kind=exc.kind, error=str(exc))
            return error_response(exc.kind)

        logger.exception("unhandled_error", path=request.path)
        return error_response(ErrorKind.DOWNLOAD_FAILED)
