"""Registry of live sessions, keyed by session id."""

from __future__ import annotations

import logging
from collections.abc import Callable
from uuid import uuid4

import anyio

from mcphost.server.exceptions import SessionIdCollisionError
from mcphost.server.session import SessionTransport

logger = logging.getLogger(__name__)

SessionFactory = Callable[[str], SessionTransport]


def generate_session_id() -> str:
    return uuid4().hex


class SessionRegistry:
    """
    Maps session ids to their SessionTransport.

    This is the only state shared between requests of different sessions.
    Insertions and removals happen under a lock; lookups are plain dictionary
    reads, which never observe a half-applied change on the event loop.

    Args:
        session_factory: Builds the transport for a freshly allocated id
    """

    def __init__(self, session_factory: SessionFactory):
        self._session_factory = session_factory
        self._sessions: dict[str, SessionTransport] = {}
        self._lock = anyio.Lock()

    async def create(self, generate_id: Callable[[], str] = generate_session_id) -> SessionTransport:
        """Allocate a session under a new id and register it.

        Raises:
            SessionIdCollisionError: if the generator returned an id already in use.
                Existing entries are never overwritten.
        """
        async with self._lock:
            session_id = generate_id()
            if session_id in self._sessions:
                raise SessionIdCollisionError(f"Session id {session_id} is already registered")
            session = self._session_factory(session_id)
            session.on_close = self.remove
            self._sessions[session_id] = session
        logger.info(f"Created new session with ID: {session_id}")
        return session

    def lookup(self, session_id: str) -> SessionTransport | None:
        return self._sessions.get(session_id)

    async def remove(self, session_id: str) -> SessionTransport | None:
        """Deregister a session. Removing an unknown id is a no-op."""
        async with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is not None:
            logger.debug(f"Removed session {session_id}")
        return session

    async def close_all(self) -> None:
        """Close and deregister every session."""
        async with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        if sessions:
            logger.info(f"Closing {len(sessions)} open session(s)")
        for session in sessions:
            await session.close()

    @property
    def session_ids(self) -> list[str]:
        return list(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)
