"""
SSE Session Transport Module

One :class:`SseSessionTransport` carries the messages of exactly one MCP session:

- ``connect()`` answers the long-lived GET request with an SSE stream. The first
  event is ``endpoint``, telling the client where to POST its messages
  (``<message path>?sessionId=<id>``). Server replies follow as ``message``
  events.
- ``handle_post_message()`` decodes one POSTed JSON-RPC message and hands it to
  the MCP server reading from the session's read stream. The POST itself is only
  acknowledged with ``202 Accepted``; the reply goes out on the SSE stream.

The transport moves through ``OPENING -> OPEN -> CLOSED``. ``CLOSED`` is final.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Callable, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from enum import Enum
from typing import Any
from urllib.parse import quote
from uuid import uuid4

import anyio
from anyio.streams.memory import MemoryObjectReceiveStream, MemoryObjectSendStream
from mcp import types
from mcp.shared.message import SessionMessage
from pydantic import ValidationError
from sse_starlette import EventSourceResponse
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import Message, Receive, Scope, Send

logger = logging.getLogger(__name__)

# Maximum size for incoming messages
MAXIMUM_MESSAGE_SIZE = 4 * 1024 * 1024  # 4MB

SESSION_ID_PARAM = "sessionId"


class SessionState(str, Enum):
    OPENING = "opening"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class BodyTooLargeError(Exception):
    max_body_bytes: int

    def __str__(self) -> str:
        return f"Request body exceeds max_body_bytes={self.max_body_bytes}"


async def read_request_body(request: Request, *, max_body_bytes: int) -> bytes:
    """Read an HTTP request body, failing as soon as it grows past the cap."""
    content_length = request.headers.get("content-length")
    if content_length is not None:
        try:
            if int(content_length) > max_body_bytes:
                raise BodyTooLargeError(max_body_bytes)
        except ValueError:
            # Invalid Content-Length; enforced while streaming instead.
            pass

    body = bytearray()
    async for chunk in request.stream():
        if len(body) + len(chunk) > max_body_bytes:
            raise BodyTooLargeError(max_body_bytes)
        body.extend(chunk)

    return bytes(body)


class SseSessionTransport:
    """
    Server-side SSE transport bound to a single session.

    The session id is generated at construction time and is never reused.
    ``on_close`` is invoked exactly once, synchronously, as soon as the SSE
    response ends (client disconnect, error or :meth:`close`).
    """

    _read_stream_writer: MemoryObjectSendStream[SessionMessage | Exception] | None

    def __init__(
        self,
        endpoint: str,
        *,
        headers: Mapping[str, str] | None = None,
        max_body_bytes: int = MAXIMUM_MESSAGE_SIZE,
    ) -> None:
        """
        Args:
            endpoint: Path the client POSTs its messages to.
            headers: Extra headers sent with the SSE response.
            max_body_bytes: Largest POST body accepted.
        """
        self.session_id = uuid4().hex
        self.on_close: Callable[[], object] | None = None
        self.headers_sent = False
        self._endpoint = endpoint
        self._headers = dict(headers or {})
        self._max_body_bytes = max_body_bytes
        self._state = SessionState.OPENING
        self._read_stream_writer = None
        self._cancel_scope: anyio.CancelScope | None = None

    @property
    def state(self) -> SessionState:
        return self._state

    def _transition(self, new_state: SessionState) -> None:
        if self._state is SessionState.CLOSED:
            raise RuntimeError(f"Session {self.session_id} is closed and cannot become {new_state.value}")
        logger.debug("Session %s: %s -> %s", self.session_id, self._state.value, new_state.value)
        self._state = new_state

    def _mark_closed(self) -> None:
        if self._state is SessionState.CLOSED:
            return
        self._transition(SessionState.CLOSED)
        if self.on_close is not None:
            self.on_close()

    def close(self) -> None:
        """Close the SSE stream and stop the session."""
        self._mark_closed()
        if self._cancel_scope is not None:
            self._cancel_scope.cancel()

    @asynccontextmanager
    async def connect(
        self, scope: Scope, receive: Receive, send: Send
    ) -> AsyncIterator[
        tuple[MemoryObjectReceiveStream[SessionMessage | Exception], MemoryObjectSendStream[SessionMessage]]
    ]:
        """Start the SSE response and yield the (read, write) streams for the MCP server."""
        if scope["type"] != "http":
            raise ValueError("connect() can only handle HTTP requests")
        if self._state is not SessionState.OPENING:
            raise RuntimeError(f"Session {self.session_id} was already connected")

        read_stream_writer, read_stream = anyio.create_memory_object_stream[SessionMessage | Exception](0)
        write_stream, write_stream_reader = anyio.create_memory_object_stream[SessionMessage](0)
        sse_stream_writer, sse_stream_reader = anyio.create_memory_object_stream[dict[str, Any]](0)
        self._read_stream_writer = read_stream_writer

        root_path = scope.get("root_path", "")
        endpoint_uri = f"{quote(root_path.rstrip('/') + self._endpoint)}?{SESSION_ID_PARAM}={self.session_id}"

        async def sse_writer():
            async with sse_stream_writer, write_stream_reader:
                await sse_stream_writer.send({"event": "endpoint", "data": endpoint_uri})
                logger.debug("Sent endpoint event for session %s: %s", self.session_id, endpoint_uri)

                async for session_message in write_stream_reader:
                    logger.debug("Sending message via SSE: %s", session_message)
                    await sse_stream_writer.send(
                        {
                            "event": "message",
                            "data": session_message.message.model_dump_json(by_alias=True, exclude_none=True),
                        }
                    )

        async def tracked_send(message: Message) -> None:
            if message["type"] == "http.response.start":
                self.headers_sent = True
            await send(message)

        async def run_response() -> None:
            response = EventSourceResponse(
                content=sse_stream_reader,
                data_sender_callable=sse_writer,
                headers=self._headers,
            )
            try:
                await response(scope, receive, tracked_send)
            finally:
                logger.debug("SSE stream for session %s ended", self.session_id)
                self._mark_closed()
                await read_stream_writer.aclose()
                await write_stream_reader.aclose()

        async with anyio.create_task_group() as tg:
            self._cancel_scope = tg.cancel_scope
            tg.start_soon(run_response)
            self._transition(SessionState.OPEN)
            try:
                yield (read_stream, write_stream)
            finally:
                # The MCP server has stopped; nothing more will be written.
                tg.cancel_scope.cancel()

    async def handle_post_message(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Decode one POSTed JSON-RPC message and forward it to the session."""
        request = Request(scope, receive)
        writer = self._read_stream_writer
        if self._state is not SessionState.OPEN or writer is None:
            response = Response("Unknown session", status_code=404)
            await response(scope, receive, send)
            return

        content_type = request.headers.get("content-type", "")
        if "application/json" not in content_type:
            response = Response("Unsupported Media Type: Content-Type must be application/json", status_code=415)
            await response(scope, receive, send)
            return

        try:
            body = await read_request_body(request, max_body_bytes=self._max_body_bytes)
        except BodyTooLargeError as err:
            logger.warning("Rejected message for session %s: %s", self.session_id, err)
            response = Response("Payload Too Large: Message exceeds maximum size", status_code=413)
            await response(scope, receive, send)
            return

        try:
            message = types.JSONRPCMessage.model_validate_json(body)
            logger.debug("Received message for session %s: %s", self.session_id, message)
        except ValidationError as err:
            logger.exception("Failed to parse message for session %s", self.session_id)
            response = Response("Could not parse message", status_code=400)
            await response(scope, receive, send)
            await writer.send(err)
            return

        response = Response("Accepted", status_code=202)
        await response(scope, receive, send)
        await writer.send(SessionMessage(message))
