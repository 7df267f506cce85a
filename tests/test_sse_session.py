"""End-to-end tests driving a real SSE session through the ASGI application."""

import json
import re
from typing import Any

import anyio
import httpx
import pytest
from mcp import types
from starlette.applications import Starlette
from starlette.types import Message, Scope

from pizzaz_server.app import create_app
from pizzaz_server.sessions import SessionRegistry
from pizzaz_server.settings import PizzazSettings

TEST_SERVER_BASE_URL = "http://testserver"


class SseStream:
    """Runs the GET request of one SSE session and collects what the server streams back."""

    def __init__(self, app: Starlette):
        self.app = app
        self.start: Message | None = None
        self.chunks: list[bytes] = []
        self.disconnected = anyio.Event()
        self.finished = anyio.Event()

    @property
    def scope(self) -> Scope:
        return {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": "GET",
            "scheme": "http",
            "path": "/mcp",
            "raw_path": b"/mcp",
            "root_path": "",
            "query_string": b"",
            "headers": [(b"host", b"testserver"), (b"accept", b"text/event-stream")],
            "client": ("127.0.0.1", 50000),
            "server": ("testserver", 80),
        }

    async def receive(self) -> Message:
        await self.disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Message) -> None:
        if message["type"] == "http.response.start":
            self.start = message
        elif message["type"] == "http.response.body":
            self.chunks.append(message.get("body", b""))

    async def run(self) -> None:
        try:
            await self.app(self.scope, self.receive, self.send)
        finally:
            self.finished.set()

    @property
    def text(self) -> str:
        return b"".join(self.chunks).decode()

    async def wait_for(self, pattern: str) -> re.Match[str]:
        with anyio.fail_after(5):
            while True:
                match = re.search(pattern, self.text)
                if match is not None:
                    return match
                await anyio.sleep(0.01)

    async def wait_for_message(self, request_id: int) -> dict[str, Any]:
        with anyio.fail_after(5):
            while True:
                for data in re.findall(r"event: message\r?\ndata: (.+?)\r?\n", self.text):
                    message = json.loads(data)
                    if message.get("id") == request_id:
                        return message
                await anyio.sleep(0.01)


def initialize_request(request_id: int) -> dict[str, Any]:
    return {
        "jsonrpc": "2.0",
        "id": request_id,
        "method": "initialize",
        "params": {
            "protocolVersion": types.LATEST_PROTOCOL_VERSION,
            "capabilities": {},
            "clientInfo": {"name": "pizzaz-test-client", "version": "0.1.0"},
        },
    }


@pytest.fixture
def sessions() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def app(sessions: SessionRegistry) -> Starlette:
    return create_app(PizzazSettings(), sessions=sessions)


@pytest.mark.anyio
async def test_sse_session_round_trip(app: Starlette, sessions: SessionRegistry):
    stream = SseStream(app)

    async with (
        anyio.create_task_group() as tg,
        httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url=TEST_SERVER_BASE_URL) as client,
    ):
        tg.start_soon(stream.run)

        match = await stream.wait_for(r"event: endpoint\r?\ndata: (/mcp/messages\?sessionId=([0-9a-f]{32}))\r?\n")
        message_url, session_id = match.group(1), match.group(2)
        assert session_id in sessions

        assert stream.start is not None
        assert stream.start["status"] == 200
        headers = dict(stream.start["headers"])
        assert headers[b"access-control-allow-origin"] == b"*"
        assert headers[b"content-type"].startswith(b"text/event-stream")

        response = await client.post(message_url, json=initialize_request(1))
        assert response.status_code == 202
        assert response.headers["access-control-allow-origin"] == "*"

        initialized = await stream.wait_for_message(1)
        assert initialized["result"]["serverInfo"] == {"name": "pizzaz-python", "version": "0.1.0"}
        assert "tools" in initialized["result"]["capabilities"]
        assert "resources" in initialized["result"]["capabilities"]

        response = await client.post(message_url, json={"jsonrpc": "2.0", "method": "notifications/initialized"})
        assert response.status_code == 202

        # A lookup miss is a request-level error; the session keeps working.
        response = await client.post(
            message_url,
            json={"jsonrpc": "2.0", "id": 2, "method": "tools/call", "params": {"name": "pizza-oven"}},
        )
        assert response.status_code == 202
        failed = await stream.wait_for_message(2)
        assert failed["error"]["message"] == "Unknown tool: pizza-oven"

        response = await client.post(
            message_url,
            json={
                "jsonrpc": "2.0",
                "id": 3,
                "method": "tools/call",
                "params": {"name": "pizza-map", "arguments": {"pizzaTopping": "mushroom"}},
            },
        )
        assert response.status_code == 202
        called = await stream.wait_for_message(3)
        assert called["result"]["content"] == [{"type": "text", "text": "Rendered a pizza map!"}]
        assert called["result"]["structuredContent"] == {"pizzaTopping": "mushroom"}
        assert called["result"]["_meta"]["openai/outputTemplate"] == "ui://widget/pizza-map.html"

        response = await client.post(message_url, content=b"{not json", headers={"content-type": "application/json"})
        assert response.status_code == 400
        assert session_id in sessions

        # Client goes away: the session disappears and its id is rejected.
        stream.disconnected.set()
        with anyio.fail_after(5):
            await stream.finished.wait()
        assert session_id not in sessions

        response = await client.post(message_url, json={"jsonrpc": "2.0", "id": 4, "method": "ping"})
        assert response.status_code == 404


@pytest.mark.anyio
async def test_sessions_are_independent(app: Starlette, sessions: SessionRegistry):
    first, second = SseStream(app), SseStream(app)

    async with anyio.create_task_group() as tg:
        tg.start_soon(first.run)
        tg.start_soon(second.run)

        first_id = (await first.wait_for(r"sessionId=([0-9a-f]{32})")).group(1)
        second_id = (await second.wait_for(r"sessionId=([0-9a-f]{32})")).group(1)

        assert first_id != second_id
        assert sessions.get(first_id) is not None
        assert sessions.get(second_id) is not None
        assert sessions.get(first_id).server is not sessions.get(second_id).server  # type: ignore[union-attr]

        first.disconnected.set()
        with anyio.fail_after(5):
            await first.finished.wait()

        assert first_id not in sessions
        assert second_id in sessions

        second.disconnected.set()

    assert len(sessions) == 0


@pytest.mark.anyio
async def test_close_all_ends_open_streams(app: Starlette, sessions: SessionRegistry):
    stream = SseStream(app)

    async with anyio.create_task_group() as tg:
        tg.start_soon(stream.run)
        await stream.wait_for(r"sessionId=([0-9a-f]{32})")
        assert len(sessions) == 1

        sessions.close_all()

        with anyio.fail_after(5):
            await stream.finished.wait()

    assert len(sessions) == 0
