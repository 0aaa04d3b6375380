"""ASGI application: one port, four handlers, picked per request by `classify`."""

import logging
import re
from contextlib import asynccontextmanager
from typing import Optional, Type

import httpx
from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import PlainTextResponse, Response

from .config import Config
from .errors import TEXT_PLAIN
from .proxy import CompatBackend, proxy_compat, proxy_direct
from .relay import RelaySession, StarletteClientSocket, realtime_url, websockets_dialer
from .relay.transport import Dialer
from .routing import Route, request_path, route_for
from .static import serve_static
from .translate import GeminiCompat


logger = logging.getLogger(__name__)

HTTP_METHODS = ["GET", "HEAD", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]


def redact(url: str) -> str:
    return re.sub(r"([?&]key=)[^&]+", r"\1***", url)


def create_app(
    config: Type[Config] = Config,
    http_client: Optional[httpx.AsyncClient] = None,
    dial: Optional[Dialer] = None,
    compat: Optional[CompatBackend] = None,
) -> FastAPI:
    dial = dial or websockets_dialer(max_size=config.UPSTREAM_MAX_MESSAGE_BYTES or None)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owned = None
        if getattr(app.state, "http", None) is None:
            owned = httpx.AsyncClient(
                timeout=httpx.Timeout(config.HTTP_READ_TIMEOUT, connect=config.HTTP_CONNECT_TIMEOUT),
                follow_redirects=False,
            )
            _attach_http(app, owned)
        try:
            yield
        finally:
            if owned is not None:
                await owned.aclose()

    def _attach_http(app: FastAPI, client: httpx.AsyncClient) -> None:
        app.state.http = client
        app.state.compat = compat or GeminiCompat(
            client,
            config.UPSTREAM_BASE_URL,
            config.API_CLIENT_ID,
            default_chat_model=config.DEFAULT_CHAT_MODEL,
            default_embeddings_model=config.DEFAULT_EMBEDDINGS_MODEL,
        )

    app = FastAPI(title="Gemini Proxy", lifespan=lifespan)
    app.state.http = None
    if http_client is not None:
        _attach_http(app, http_client)

    @app.websocket("/{path:path}")
    async def websocket_entry(websocket: WebSocket, path: str):
        route = route_for(websocket)
        if route is not Route.RELAY:
            logger.warning("WebSocket for %s classified as %s, refusing", request_path(websocket), route.value)
            await websocket.close(code=1002)
            return

        await websocket.accept()
        target = realtime_url(config.UPSTREAM_BASE_URL, request_path(websocket), websocket.url.query)
        logger.info("Relaying WebSocket to %s", redact(target))
        session = RelaySession(
            StarletteClientSocket(websocket),
            dial,
            target,
            dial_timeout=config.RELAY_DIAL_TIMEOUT,
            close_timeout=config.RELAY_CLOSE_TIMEOUT,
            max_pending_messages=config.RELAY_MAX_PENDING_MESSAGES,
            max_pending_bytes=config.RELAY_MAX_PENDING_BYTES,
        )
        await session.run()

    @app.api_route("/{path:path}", methods=HTTP_METHODS)
    async def http_entry(request: Request, path: str) -> Response:
        route = route_for(request)
        if route is Route.RELAY:
            # the server hands us an HTTP scope only when it did not accept the upgrade
            logger.warning("Rejected malformed WebSocket upgrade for %s", request.url.path)
            return PlainTextResponse(
                "Bad WebSocket upgrade request",
                status_code=400,
                headers={"content-type": TEXT_PLAIN},
            )
        if route is Route.DIRECT:
            return await proxy_direct(request, app.state.http, config.UPSTREAM_BASE_URL, config.API_CLIENT_ID)
        if route is Route.COMPAT:
            return await proxy_compat(request, app.state.compat)
        return serve_static(config.STATIC_DIR, request.url.path)

    return app


app = create_app()
