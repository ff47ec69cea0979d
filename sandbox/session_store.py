"""
SessionStore - persistence layer for sandbox session records.

Separated from SandboxManager so lifecycle policy stays apart from I/O.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import datetime

from sandbox.session import Session


class SessionStore(ABC):
    """Abstract interface for session persistence.

    Implementations: InMemorySessionStore (default), SQLiteSessionStore (durable).
    Records are keyed by the caller-supplied session_id.
    """

    @abstractmethod
    def get(self, session_id: str) -> Session | None:
        """Get a snapshot of the session record, or None."""

    @abstractmethod
    def put(self, session: Session) -> None:
        """Insert or replace the session record."""

    @abstractmethod
    def touch(self, session_id: str) -> Session | None:
        """Refresh last_accessed_at and return the updated snapshot, or None."""

    @abstractmethod
    def delete(self, session_id: str) -> None:
        """Delete the session record. Absent keys are ignored."""

    @abstractmethod
    def list_all(self) -> list[Session]:
        """Get all session records."""

    def list_expired(self, now: datetime | None = None) -> list[Session]:
        now = now or datetime.now()
        return [s for s in self.list_all() if s.is_expired(now)]

    @abstractmethod
    def close(self) -> None:
        """Flush and release resources."""


class InMemorySessionStore(SessionStore):
    def __init__(self):
        self._lock = threading.Lock()
        self._sessions: dict[str, Session] = {}

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def put(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.session_id] = replace(session)

    def touch(self, session_id: str) -> Session | None:
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None:
                return None
            session.touch()
            return replace(session)

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def list_all(self) -> list[Session]:
        with self._lock:
            return [replace(s) for s in self._sessions.values()]

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def close(self) -> None:
        with self._lock:
            self._sessions.clear()
