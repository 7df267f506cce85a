"""Registry of live SSE sessions."""

from __future__ import annotations

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Any

from mcp.server.lowlevel import Server

from pizzaz_server.transport import SessionState, SseSessionTransport

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Session:
    session_id: str
    server: Server[Any, Any]
    transport: SseSessionTransport


class SessionRegistry:
    """Maps session ids to their MCP server and SSE transport.

    Only open sessions can be registered. A session is removed as soon as its
    transport reports the stream closed, so a POST for a stale id sees an
    unknown session instead of waiting on a dead stream.

    The registry is only touched from the event loop and needs no locking.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}

    def register(self, session: Session) -> None:
        if session.transport.state is not SessionState.OPEN:
            state = session.transport.state.value
            raise RuntimeError(f"Cannot register session {session.session_id} in state {state}")
        if session.session_id in self._sessions:
            raise ValueError(f"Session {session.session_id} is already registered")

        self._sessions[session.session_id] = session
        session.transport.on_close = lambda: self.remove(session.session_id)
        logger.info("Session %s opened (%d active)", session.session_id, len(self._sessions))

    def get(self, session_id: str) -> Session | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> Session | None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.info("Session %s closed (%d active)", session_id, len(self._sessions))
        return session

    def ids(self) -> list[str]:
        return list(self._sessions)

    def close_all(self) -> None:
        """Close every live session, e.g. on application shutdown."""
        for session in list(self._sessions.values()):
            session.transport.close()
        self._sessions.clear()

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def __iter__(self) -> Iterator[Session]:
        return iter(list(self._sessions.values()))
