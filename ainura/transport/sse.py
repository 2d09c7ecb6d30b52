"""SSE sessions.

The SSE transport is half-duplex: the agent holds a long-lived GET
stream for server → agent traffic and POSTs requests to a companion URL.
A session id correlates the two. The session lives exactly as long as
the stream; once the stream closes, POSTs naming it are rejected.

Responses are pushed in the order their operations complete, which may
differ from the order the POSTs arrived.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from typing import Any, AsyncGenerator

logger = logging.getLogger(__name__)


def format_event(event: str, data: Any) -> str:
    """Frame one SSE event. Strings go out verbatim, everything else as JSON."""
    payload = data if isinstance(data, str) else json.dumps(data, ensure_ascii=False)
    lines = "".join(f"data: {line}\n" for line in payload.split("\n"))
    return f"event: {event}\n{lines}\n"


class SseSession:
    """One open SSE stream and its outbound queue."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.closed = False

    def send(self, event: str, data: Any) -> bool:
        if self.closed:
            return False
        self.queue.put_nowait(format_event(event, data))
        return True


class SessionManager:
    """Live SSE sessions keyed by id."""

    def __init__(self) -> None:
        self._sessions: dict[str, SseSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def open(self) -> SseSession:
        session = SseSession(str(uuid.uuid4()))
        self._sessions[session.session_id] = session
        logger.info("SSE client connected (session: %s...)", session.session_id[:8])
        return session

    def get(self, session_id: str | None) -> SseSession | None:
        if not session_id:
            return None
        return self._sessions.get(session_id)

    def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is not None:
            session.closed = True
            logger.info("SSE client disconnected (session: %s...)", session_id[:8])

    async def stream(
        self, session: SseSession, endpoint_url: str
    ) -> AsyncGenerator[str, None]:
        """Event stream for *session*: the ``endpoint`` event, then responses.

        Closing the generator (client disconnect) closes the session.
        """
        try:
            # The endpoint payload is a plain URL, not JSON.
            yield format_event("endpoint", endpoint_url)
            while True:
                yield await session.queue.get()
        finally:
            self.close(session.session_id)
