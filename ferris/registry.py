"""Index of the sessions that are currently alive."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .session import Session

logger = logging.getLogger(__name__)


class SessionRegistry:
    """Sessions in registration order.

    This is a lookup index, not an allocator: nothing stops two sessions from
    sharing a root. Callers that need one session per root use :meth:`find`
    before starting a new one.
    """

    def __init__(self) -> None:
        self._sessions: list[Session] = []

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return any(s is session for s in self._sessions)

    def register(self, session: Session) -> None:
        if session in self:
            return
        self._sessions.append(session)
        logger.debug(f"Registered session {session.id} ({session.name}) at {session.root_dir}")

    def unregister(self, session: Session) -> None:
        before = len(self._sessions)
        self._sessions = [s for s in self._sessions if s is not session]
        if len(self._sessions) != before:
            logger.debug(f"Unregistered session {session.id} ({session.name})")

    def active_sessions(self, name: str | None = None, bufnr: int | None = None) -> list[Session]:
        return [
            s
            for s in self._sessions
            if s.state.is_active
            and (name is None or s.name == name)
            and (bufnr is None or bufnr in s.buffers)
        ]

    def for_buffer(self, bufnr: int, name: str | None = None) -> list[Session]:
        return self.active_sessions(name=name, bufnr=bufnr)

    def serving_sessions(self, name: str | None = None) -> list[Session]:
        """Active sessions that are not being stopped."""
        return [s for s in self.active_sessions(name=name) if s.state.is_serving]

    def latest(self, name: str | None = None) -> Session | None:
        sessions = self.serving_sessions(name=name)
        return sessions[-1] if sessions else None

    def find(self, name: str, root_dir: Path | None) -> Session | None:
        for session in reversed(self.serving_sessions(name=name)):
            if session.root_dir == root_dir:
                return session
        return None
