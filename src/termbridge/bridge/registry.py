"""Registry of live terminal sessions."""

from __future__ import annotations

import asyncio
import logging
import threading
from typing import TYPE_CHECKING, Callable

from termbridge.bridge.connection import CLOSE_GOING_AWAY
from termbridge.bridge.errors import SessionLimitError
from termbridge.domain.models import SessionInfo

if TYPE_CHECKING:
    from termbridge.bridge.session import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Process-wide table of live sessions, keyed by session id.

    Created empty when the server starts and drained by close_all()
    when it stops. Sessions add themselves through the acceptor and
    remove themselves exactly once from their teardown path.

    Args:
        max_sessions: Maximum number of concurrent sessions.
                      0 means no limit.
    """

    def __init__(self, max_sessions: int = 0) -> None:
        self._sessions: dict[str, Session] = {}
        self._lock = threading.Lock()
        self._max_sessions = max_sessions

    @property
    def max_sessions(self) -> int:
        return self._max_sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        with self._lock:
            return session_id in self._sessions

    def has_capacity(self) -> bool:
        with self._lock:
            return self._max_sessions <= 0 or len(self._sessions) < self._max_sessions

    def register(self, session: Session) -> None:
        """Add a session.

        Raises:
            SessionLimitError: If the registry is full.
            ValueError: If a session with the same id is already registered.
        """
        with self._lock:
            if session.session_id in self._sessions:
                raise ValueError(f"Session {session.session_id} is already registered")
            if 0 < self._max_sessions <= len(self._sessions):
                raise SessionLimitError(
                    f"Session limit reached ({self._max_sessions})",
                    session_id=session.session_id,
                )
            self._sessions[session.session_id] = session
            count = len(self._sessions)
        logger.info("Registered session %s (%d active)", session.session_id, count)

    def deregister(self, session_id: str) -> bool:
        """Remove a session. Returns False if it was not registered."""
        with self._lock:
            removed = self._sessions.pop(session_id, None)
            count = len(self._sessions)
        if removed is None:
            return False
        logger.info("Deregistered session %s (%d active)", session_id, count)
        return True

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            return self._sessions.get(session_id)

    def for_each(self, visitor: Callable[[Session], None]) -> None:
        """Call ``visitor`` on every session registered at call time."""
        with self._lock:
            sessions = list(self._sessions.values())
        for session in sessions:
            visitor(session)

    def snapshot(self) -> list[SessionInfo]:
        infos: list[SessionInfo] = []
        self.for_each(lambda session: infos.append(session.info()))
        return infos

    async def close_all(self, reason: str = "server shutdown") -> None:
        """Tear down every remaining session concurrently."""
        sessions: list[Session] = []
        self.for_each(sessions.append)
        if not sessions:
            return
        logger.info("Closing %d session(s): %s", len(sessions), reason)
        results = await asyncio.gather(
            *(session.close(reason, CLOSE_GOING_AWAY) for session in sessions),
            return_exceptions=True,
        )
        for session, result in zip(sessions, results):
            if isinstance(result, BaseException):
                logger.error(
                    "Error closing session %s: %s", session.session_id, result,
                    exc_info=result,
                )
