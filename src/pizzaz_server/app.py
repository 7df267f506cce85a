"""HTTP routing for the Pizzaz server.

Two paths are served from one Starlette application:

- the SSE path: ``GET`` opens a session stream,
- the message path: ``POST ?sessionId=<id>`` delivers one client message.

Both answer ``OPTIONS`` preflights. Any other method or path is a 404.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from typing import Any

from mcp.server.lowlevel import Server
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import PlainTextResponse, Response
from starlette.routing import Route
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from pizzaz_server.catalog import WidgetCatalog
from pizzaz_server.handlers import ServerFactory
from pizzaz_server.sessions import Session, SessionRegistry
from pizzaz_server.settings import PizzazSettings
from pizzaz_server.transport import SESSION_ID_PARAM, SseSessionTransport

logger = logging.getLogger(__name__)

CORS_PREFLIGHT_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS",
    "Access-Control-Allow-Headers": "content-type",
}
SSE_HEADERS = {"Access-Control-Allow-Origin": "*"}
POST_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "content-type",
}


class _ResponseTracker:
    """ASGI send wrapper adding default headers and recording whether a response started."""

    def __init__(self, send: Send, headers: Mapping[str, str]):
        self._send = send
        self._headers = [(k.lower().encode("latin-1"), v.encode("latin-1")) for k, v in headers.items()]
        self.started = False

    async def __call__(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.started = True
            present = {name.lower() for name, _ in message.get("headers", [])}
            extra = [(name, value) for name, value in self._headers if name not in present]
            message = {**message, "headers": [*message.get("headers", []), *extra]}
        await self._send(message)


class MethodDispatcher:
    """Routes a request on one path to the handler registered for its method."""

    def __init__(self, handlers: Mapping[str, ASGIApp]):
        self.handlers = dict(handlers)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        handler = self.handlers.get(scope["method"])
        if handler is None:
            response = PlainTextResponse("Not Found", status_code=404)
            await response(scope, receive, send)
            return
        await handler(scope, receive, send)


class PizzazGateway:
    """Binds SSE sessions to MCP servers and routes POSTed messages to them."""

    def __init__(
        self,
        server_factory: Callable[[], Server[Any, Any]],
        sessions: SessionRegistry,
        *,
        message_path: str,
    ):
        self.server_factory = server_factory
        self.sessions = sessions
        self.message_path = message_path

    async def handle_preflight(self, scope: Scope, receive: Receive, send: Send) -> None:
        response = Response(status_code=204, headers=CORS_PREFLIGHT_HEADERS)
        await response(scope, receive, send)

    async def handle_sse(self, scope: Scope, receive: Receive, send: Send) -> None:
        transport = SseSessionTransport(self.message_path, headers=SSE_HEADERS)

        try:
            server = self.server_factory()
            async with transport.connect(scope, receive, send) as (read_stream, write_stream):
                self.sessions.register(Session(transport.session_id, server, transport))
                await server.run(read_stream, write_stream, server.create_initialization_options())
        except Exception:
            logger.exception("Failed to run SSE session %s", transport.session_id)
            if not transport.headers_sent:
                response = PlainTextResponse("Failed to establish SSE connection", status_code=500)
                await response(scope, receive, send)
        finally:
            self.sessions.remove(transport.session_id)

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        request = Request(scope, receive)
        tracker = _ResponseTracker(send, POST_HEADERS)

        session_id = request.query_params.get(SESSION_ID_PARAM)
        if not session_id:
            response = PlainTextResponse(f"Missing {SESSION_ID_PARAM} query parameter", status_code=400)
            await response(scope, receive, tracker)
            return

        session = self.sessions.get(session_id)
        if session is None:
            logger.warning("Received message for unknown session %s", session_id)
            response = PlainTextResponse("Unknown session", status_code=404)
            await response(scope, receive, tracker)
            return

        try:
            await session.transport.handle_post_message(scope, receive, tracker)
        except Exception:
            logger.exception("Failed to process message for session %s", session_id)
            if not tracker.started:
                response = PlainTextResponse("Failed to process message", status_code=500)
                await response(scope, receive, tracker)


def create_app(
    settings: PizzazSettings | None = None,
    *,
    catalog: WidgetCatalog | None = None,
    sessions: SessionRegistry | None = None,
) -> Starlette:
    """Build the Starlette application serving the SSE and message paths."""
    settings = settings or PizzazSettings()
    sessions = sessions if sessions is not None else SessionRegistry()
    gateway = PizzazGateway(
        ServerFactory(catalog or WidgetCatalog()),
        sessions,
        message_path=settings.message_path,
    )

    @asynccontextmanager
    async def lifespan(app: Starlette) -> AsyncIterator[None]:
        try:
            yield
        finally:
            if len(sessions):
                logger.info("Closing %d open session(s)", len(sessions))
            sessions.close_all()

    routes = [
        Route(
            settings.sse_path,
            endpoint=MethodDispatcher({"GET": gateway.handle_sse, "OPTIONS": gateway.handle_preflight}),
        ),
        Route(
            settings.message_path,
            endpoint=MethodDispatcher({"POST": gateway.handle_post_message, "OPTIONS": gateway.handle_preflight}),
        ),
    ]

    app = Starlette(debug=settings.debug, routes=routes, lifespan=lifespan)
    # Paths match exactly; a trailing slash is a different path.
    app.router.redirect_slashes = False
    app.state.sessions = sessions
    app.state.gateway = gateway
    return app
