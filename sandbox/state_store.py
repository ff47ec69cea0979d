"""
Key/value state storage used by platform actors to survive host restarts.

Each actor owns exactly one key; values are JSON-serializable dicts.
StateSessionStore adapts a StateStorage to the SessionStore interface so an
actor host can run the ordinary SandboxManager over it.
"""

import json
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from sandbox.db import DEFAULT_ACTOR_DB_PATH
from sandbox.session import Session
from sandbox.session_store import SessionStore


class StateStorage(ABC):
    @abstractmethod
    def get(self, key: str) -> dict[str, Any] | None:
        """Load the value stored under key, or None."""

    @abstractmethod
    def put(self, key: str, value: dict[str, Any]) -> None:
        """Store value under key, replacing any previous value."""

    @abstractmethod
    def delete(self, key: str) -> None:
        """Forget key. Absent keys are ignored."""

    @abstractmethod
    def keys(self) -> list[str]:
        """All keys currently holding a value."""

    def close(self) -> None:
        pass


class InMemoryStateStorage(StateStorage):
    def __init__(self):
        self._lock = threading.Lock()
        self._data: dict[str, str] = {}

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        # Serialize on write so callers never share mutable state with the store.
        raw = json.dumps(value)
        with self._lock:
            self._data[key] = raw

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        with self._lock:
            return list(self._data)


class SQLiteStateStorage(StateStorage):
    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path or DEFAULT_ACTOR_DB_PATH
        self._lock = threading.Lock()
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(self.db_path, timeout=10, check_same_thread=False)
        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("""
            CREATE TABLE IF NOT EXISTS actor_state (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            )
        """)
        self._conn.commit()

    def get(self, key: str) -> dict[str, Any] | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM actor_state WHERE key = ?", (key,)).fetchone()
        return json.loads(row[0]) if row else None

    def put(self, key: str, value: dict[str, Any]) -> None:
        raw = json.dumps(value)
        with self._lock:
            self._conn.execute("INSERT OR REPLACE INTO actor_state (key, value) VALUES (?, ?)", (key, raw))
            self._conn.commit()

    def delete(self, key: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM actor_state WHERE key = ?", (key,))
            self._conn.commit()

    def keys(self) -> list[str]:
        with self._lock:
            return [row[0] for row in self._conn.execute("SELECT key FROM actor_state").fetchall()]

    def close(self) -> None:
        with self._lock:
            self._conn.close()


class StateSessionStore(SessionStore):
    """SessionStore over a StateStorage: one key per session, value is the serialized record."""

    def __init__(self, storage: StateStorage):
        self.storage = storage

    def get(self, session_id: str) -> Session | None:
        data = self.storage.get(session_id)
        return Session.from_dict(data) if data else None

    def put(self, session: Session) -> None:
        self.storage.put(session.session_id, session.to_dict())

    def touch(self, session_id: str) -> Session | None:
        session = self.get(session_id)
        if session is None:
            return None
        session.touch()
        self.put(session)
        return session

    def delete(self, session_id: str) -> None:
        self.storage.delete(session_id)

    def list_all(self) -> list[Session]:
        sessions = []
        for key in self.storage.keys():
            session = self.get(key)
            if session:
                sessions.append(session)
        return sessions

    def close(self) -> None:
        self.storage.close()
