from __future__ import annotations

import json

import structlog
from aiohttp import web

from instafetch.delivery.destination import ResponseDestination
from instafetch.delivery.streamer import deliver
from instafetch.errors import ErrorKind, ResolutionError
from instafetch.resolvers.base import MediaDescriptor, MediaKind
from instafetch.resolvers.orchestrator import Resolver
from instafetch.utils.link_detector import classify_link
from instafetch.web.middlewares import error_middleware, logging_middleware

logger = structlog.get_logger()

RESOLVER_KEY = web.AppKey("resolver", Resolver)

routes = web.RouteTableDef()


async def _read_body(request: web.Request) -> dict:
    try:
        body = await request.json()
    except json.JSONDecodeError:
        body = None
    if not isinstance(body, dict) or not body.get("url"):
        raise ResolutionError(ErrorKind.INVALID_URL, "URL is required")
    return body


def _item_index(body: dict) -> int | None:
    value = body.get("itemIndex")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ResolutionError(ErrorKind.INVALID_URL, "itemIndex must be an integer")
    return value


def preview_body(descriptor: MediaDescriptor) -> dict:
    """Summary the frontend renders before the user picks what to download."""
    items: list[dict] = []
    if descriptor.kind == MediaKind.CAROUSEL:
        for idx, child in enumerate(descriptor.children):
            items.append(
                {
                    "id": idx,
                    "type": child.kind,
                    "thumbnail": child.primary_image.url if child.primary_image else None,
                    "mediaUrl": child.best_asset.url if child.best_asset else None,
                }
            )
    else:
        media = descriptor.primary_video or descriptor.primary_image
        thumb = descriptor.poster or media
        items.append(
            {
                "id": 0,
                "type": descriptor.kind,
                "thumbnail": thumb.url,
                "mediaUrl": media.url,
            }
        )

    return {
        "type": descriptor.kind,
        "shortcode": descriptor.shortcode,
        "source": descriptor.source_strategy,
        "requiresDirectFetch": descriptor.requires_direct_fetch,
        "items": items,
    }


@routes.post("/api/preview")
async def preview(request: web.Request) -> web.Response:
    body = await _read_body(request)
    target = classify_link(body["url"])
    descriptor = await request.app[RESOLVER_KEY].resolve_media(target)
    return web.json_response(preview_body(descriptor))


@routes.post("/api/download")
@routes.post("/resolve")
async def download(request: web.Request) -> web.StreamResponse:
    body = await _read_body(request)
    item_index = _item_index(body)
    target = classify_link(body["url"])
    descriptor = await request.app[RESOLVER_KEY].resolve_media(target)

    destination = ResponseDestination(request)
    request["destination"] = destination
    path = await deliver(descriptor, destination, item_index, video_hint=target.is_video_hint)
    logger.info(
        "media_delivered",
        url=target.url,
        kind=descriptor.kind,
        source=descriptor.source_strategy,
        path=path,
    )
    return destination.response


@routes.get("/health")
async def health(request: web.Request) -> web.Response:
    return web.json_response({"status": "ok"})


def create_app(resolver: Resolver | None = None) -> web.Application:
    app = web.Application(middlewares=[logging_middleware, error_middleware])
    app[RESOLVER_KEY] = resolver or Resolver()
    app.add_routes(routes)
    return app
