"""Session store fed by the transport's session lifecycle events.

Holds the agent sessions the board shows next to its columns.  The
transport hands every ``session.*`` event to :meth:`SessionStore.handle_event`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Optional

from loguru import logger

from .constants import SESSION_CANCELLED, SESSION_COMPLETED, SESSION_STARTED, SESSION_UPDATED
from .transport.messages import SessionEvent
from .utils import _now_iso


@dataclass
class Session:
    id: str
    status: str = "active"
    data: dict[str, Any] = field(default_factory=dict)
    updated_at: str = field(default_factory=_now_iso)
    ended_at: Optional[str] = None

    @property
    def is_active(self) -> bool:
        return self.ended_at is None and self.status not in {"completed", "cancelled"}

    def to_dict(self) -> dict[str, Any]:
        return {
            **self.data,
            "id": self.id,
            "status": self.status,
            "updated_at": self.updated_at,
            "ended_at": self.ended_at,
        }


_TERMINAL_STATUS = {
    SESSION_COMPLETED: "completed",
    SESSION_CANCELLED: "cancelled",
}


class SessionStore:
    """Newest-first list of sessions kept current from the event stream."""

    def __init__(self) -> None:
        self._sessions: list[Session] = []
        self._listeners: list[Callable[[Session], None]] = []

    def add_listener(self, listener: Callable[[Session], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def _remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _remove

    def get(self, session_id: str) -> Optional[Session]:
        for session in self._sessions:
            if session.id == session_id:
                return session
        return None

    def all(self) -> list[Session]:
        return list(self._sessions)

    def active(self) -> list[Session]:
        return [s for s in self._sessions if s.is_active]

    def handle_event(self, event: SessionEvent) -> Optional[Session]:
        session_id = event.resolved_session_id
        if not session_id:
            logger.warning("Ignoring {} without a session id", event.type)
            return None

        payload = dict(event.session or {})
        existing = self.get(session_id)

        if event.type == SESSION_STARTED:
            if existing is not None:
                self._sessions.remove(existing)
            session = Session(id=session_id, status=str(payload.get("status") or "active"), data=payload)
            self._sessions.insert(0, session)
        elif event.type == SESSION_UPDATED:
            if existing is None:
                session = Session(id=session_id, data=payload)
                self._sessions.insert(0, session)
            else:
                session = existing
                session.data.update(payload)
            if payload.get("status"):
                session.status = str(payload["status"])
            session.updated_at = _now_iso()
        elif event.type in _TERMINAL_STATUS:
            session = existing or Session(id=session_id)
            if existing is None:
                self._sessions.insert(0, session)
            session.data.update(payload)
            session.status = _TERMINAL_STATUS[event.type]
            session.updated_at = _now_iso()
            session.ended_at = session.updated_at
        else:
            return None

        logger.debug("Session {} -> {}", session.id, session.status)
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception:
                logger.exception("Session listener failed")
        return session
