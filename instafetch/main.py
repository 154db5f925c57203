from __future__ import annotations

import logging
import sys

import structlog
from aiohttp import web

from instafetch.config import settings
from instafetch.web.app import create_app


def configure_logging() -> None:
    """Set up structlog with JSON rendering for production, pretty for dev."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer()
            if sys.stderr.isatty()
            else structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, settings.log_level.upper(), logging.INFO)
        ),
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def main() -> None:
    configure_logging()
    log = structlog.get_logger()

    log.info(
        "starting_server",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level,
        rapidapi=settings.has_rapidapi_key,
    )

    # Client disconnects cancel the handler, which kills any yt-dlp child or browser
    web.run_app(
        create_app(),
        host=settings.host,
        port=settings.port,
        handler_cancellation=True,
        print=None,
    )


if __name__ == "__main__":
    main()
