"""
HTTP server implementation for the inventory server.

This module provides the REST API:
- GET /{collection} (and /{collection}/): filtered list, or a WebSocket
  watch with the watch header
- GET /{collection}/{id}: single record at full detail
- GET /tree/{tree}: hierarchical view rooted at every DataCenter
- GET /health: liveness, store revision and open watch count

Watch wire contract:
    After the upgrade the server writes one JSON message per event, in
    order: snapshot Created messages, one Parity marker, then deltas.
    The close code tells the client why the stream ended:
        1000 client closed, 1001 server shutdown,
        1011 store failure, 1013 consumer too slow

Invariants:
    - Negotiation errors are plain HTTP errors sent before the upgrade
    - Error bodies are {"error", "error_code"} JSON
    - A watch handler never outlives its subscription

How to change safely:
    - Register literal routes before /{collection} so they are not shadowed
    - Keep close codes stable; clients branch on them to re-subscribe
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from aiohttp import WSCloseCode, WSMsgType, web

from ..config import HttpConfig, WatchConfig
from ..errors import (
    BadRequest,
    InventoryError,
    NotFound,
    SlowConsumer,
    StoreError,
    UnsupportedKind,
)
from ..watch import Subscription
from .service import InventoryService, RequestContext, TreeRequest

logger = logging.getLogger(__name__)

_STATUS = (
    (NotFound, 404),
    (BadRequest, 400),
    (UnsupportedKind, 400),
    (StoreError, 500),
)


def status_for(error: InventoryError) -> int:
    """HTTP status of an inventory error."""
    for error_type, status in _STATUS:
        if isinstance(error, error_type):
            return status
    return 500


def close_code_for(subscription: Subscription, client_closed: bool) -> int:
    """WebSocket close code for a finished watch."""
    if isinstance(subscription.reason, SlowConsumer):
        return WSCloseCode.TRY_AGAIN_LATER
    if subscription.reason is not None:
        return WSCloseCode.INTERNAL_ERROR
    if client_closed:
        return WSCloseCode.OK
    return WSCloseCode.GOING_AWAY


def create_http_app(
    service: InventoryService,
    config: HttpConfig | None = None,
    watch_config: WatchConfig | None = None,
) -> web.Application:
    """Create the HTTP application.

    Args:
        service: InventoryService instance
        config: HTTP server configuration
        watch_config: Watch configuration (heartbeat)

    Returns:
        aiohttp Application instance
    """
    config = config or HttpConfig()
    watch_config = watch_config or WatchConfig()
    app = web.Application()

    app.router.add_get("/health", lambda r: handle_health(r, service))
    app.router.add_get("/tree/{tree}", lambda r: handle_tree(r, service, config))
    app.router.add_get(
        "/{collection}", lambda r: handle_list(r, service, config, watch_config)
    )
    app.router.add_get(
        "/{collection}/", lambda r: handle_list(r, service, config, watch_config)
    )
    app.router.add_get("/{collection}/{id}", lambda r: handle_get(r, service))

    # Add CORS middleware
    @web.middleware
    async def cors_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        if request.method == "OPTIONS":
            response = web.Response()
        else:
            try:
                response = await handler(request)
            except web.HTTPException as e:
                response = e

        # Watch responses are already upgraded
        if response.prepared:
            return response

        origin = request.headers.get("Origin", "*")
        if "*" in config.cors_origins or origin in config.cors_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
        response.headers["Access-Control-Allow-Methods"] = "GET, OPTIONS"
        response.headers["Access-Control-Allow-Headers"] = f"Content-Type, {config.watch_header}"

        return response

    app.middlewares.append(cors_middleware)

    # Add error handler
    @web.middleware
    async def error_middleware(request: web.Request, handler: Callable) -> web.StreamResponse:
        try:
            return await handler(request)
        except web.HTTPException:
            raise
        except InventoryError as e:
            status = status_for(e)
            if status >= 500:
                logger.error(f"Request failed: {e}", extra={"url": str(request.url)})
            return web.json_response(e.to_dict(), status=status)
        except Exception as e:
            logger.error(f"HTTP handler error: {e}", exc_info=True)
            return web.json_response(
                {"error": str(e), "error_code": "INTERNAL"},
                status=500,
            )

    app.middlewares.insert(0, error_middleware)

    async def close_watches(app: web.Application) -> None:
        for subscription in service.manager.subscriptions():
            subscription.close()

    app.on_shutdown.append(close_watches)

    return app


def is_watch(request: web.Request, config: HttpConfig) -> bool:
    return config.watch_header in request.headers


async def handle_health(request: web.Request, service: InventoryService) -> web.Response:
    """Handle GET /health - Health check."""
    result = await service.health()
    status = 200 if result.get("healthy") else 503
    return web.json_response(result, status=status)


async def handle_tree(
    request: web.Request,
    service: InventoryService,
    config: HttpConfig,
) -> web.Response:
    """Handle GET /tree/{tree} - Build a tree."""
    tree_request = TreeRequest.parse(
        request.match_info["tree"],
        request.query,
        watch=is_watch(request, config),
        link_prefix=service.link_prefix,
    )
    return web.json_response(await service.tree(tree_request))


async def handle_get(request: web.Request, service: InventoryService) -> web.Response:
    """Handle GET /{collection}/{id} - Get one record."""
    kind = service.resolve(request.match_info["collection"])
    return web.json_response(await service.get(kind, request.match_info["id"]))


async def handle_list(
    request: web.Request,
    service: InventoryService,
    config: HttpConfig,
    watch_config: WatchConfig,
) -> web.StreamResponse:
    """Handle GET /{collection} - List, or watch with the watch header."""
    kind = service.resolve(request.match_info["collection"])
    ctx = RequestContext.parse(kind, request.query, watch=is_watch(request, config))
    if ctx.watch:
        return await handle_watch(request, service, ctx, watch_config)
    return web.json_response(await service.list(ctx))


async def handle_watch(
    request: web.Request,
    service: InventoryService,
    ctx: RequestContext,
    watch_config: WatchConfig,
) -> web.WebSocketResponse:
    """Upgrade to a WebSocket and stream a subscription.

    Raises:
        BadRequest: If the request cannot be upgraded
        UnsupportedKind: If the kind cannot be watched
        StoreError: If the snapshot read fails
    """
    ws = web.WebSocketResponse(heartbeat=watch_config.heartbeat_seconds or None)
    if not ws.can_prepare(request).ok:
        raise BadRequest("Watch requires a WebSocket upgrade", details={"kind": ctx.kind})

    subscription = await service.watch(ctx)
    try:
        await ws.prepare(request)
    except Exception:
        subscription.close()
        raise

    client_closed = False

    async def read_until_closed() -> None:
        nonlocal client_closed
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning(
                    f"Watch connection error: {ws.exception()}",
                    extra={"subscription_id": subscription.id},
                )
                break
        if not subscription.closed:
            client_closed = True
            subscription.close()

    reader = asyncio.create_task(read_until_closed())
    try:
        async for event in subscription.events():
            await ws.send_json(await service.payload(event, ctx.detail))
    except ConnectionResetError:
        client_closed = True
    except StoreError as e:
        subscription.close(e)
    finally:
        subscription.close()
        reader.cancel()
        await asyncio.gather(reader, return_exceptions=True)

    code = close_code_for(subscription, client_closed)
    message = subscription.reason.message.encode() if subscription.reason else b""
    await ws.close(code=code, message=message[:120])
    logger.debug(
        "Watch connection finished",
        extra={"subscription_id": subscription.id, "close_code": int(code)},
    )
    return ws

