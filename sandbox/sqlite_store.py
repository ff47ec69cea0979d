"""
SQLiteSessionStore - local SQLite implementation of SessionStore.

One row per session_id; a new lifecycle for the same session_id replaces the row.
"""

import sqlite3
import threading
from datetime import datetime
from pathlib import Path

from sandbox.db import DEFAULT_DB_PATH
from sandbox.lifecycle import parse_session_status
from sandbox.session import Session
from sandbox.session_store import SessionStore

_COLUMNS = (
    "session_id",
    "instance_id",
    "owner",
    "repo",
    "branch",
    "provider",
    "status",
    "url",
    "instance_handle",
    "created_at",
    "last_accessed_at",
    "expires_at",
    "error_message",
)


class SQLiteSessionStore(SessionStore):
    def __init__(self, db_path: Path | str | None = None):
        self.db_path = db_path or DEFAULT_DB_PATH
        self._lock = threading.Lock()
        self._conn = self._init_db()

    def _init_db(self) -> sqlite3.Connection:
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, timeout=10, check_same_thread=False)
        conn.execute("PRAGMA journal_mode=WAL")
        conn.row_factory = sqlite3.Row

        conn.execute("""
            CREATE TABLE IF NOT EXISTS sandbox_sessions (
                session_id TEXT PRIMARY KEY,
                instance_id TEXT NOT NULL,
                owner TEXT NOT NULL,
                repo TEXT NOT NULL,
                branch TEXT,
                provider TEXT NOT NULL,
                status TEXT NOT NULL DEFAULT 'provisioning',
                url TEXT,
                instance_handle TEXT,
                created_at TEXT NOT NULL,
                last_accessed_at TEXT NOT NULL,
                expires_at TEXT,
                error_message TEXT
            )
        """)
        conn.execute("CREATE INDEX IF NOT EXISTS idx_sandbox_sessions_expires ON sandbox_sessions(expires_at)")
        conn.commit()
        return conn

    def get(self, session_id: str) -> Session | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT * FROM sandbox_sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def put(self, session: Session) -> None:
        values = (
            session.session_id,
            session.instance_id,
            session.owner,
            session.repo,
            session.branch,
            session.provider,
            session.status.value,
            session.url,
            session.instance_handle,
            session.created_at.isoformat(),
            session.last_accessed_at.isoformat(),
            session.expires_at.isoformat() if session.expires_at else None,
            session.error_message,
        )
        placeholders = ", ".join("?" for _ in _COLUMNS)
        with self._lock:
            self._conn.execute(
                f"INSERT OR REPLACE INTO sandbox_sessions ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                values,
            )
            self._conn.commit()

    def touch(self, session_id: str) -> Session | None:
        with self._lock:
            self._conn.execute(
                "UPDATE sandbox_sessions SET last_accessed_at = ? WHERE session_id = ?",
                (datetime.now().isoformat(), session_id),
            )
            self._conn.commit()
            row = self._conn.execute(
                "SELECT * FROM sandbox_sessions WHERE session_id = ?",
                (session_id,),
            ).fetchone()
            return self._row_to_session(row) if row else None

    def delete(self, session_id: str) -> None:
        with self._lock:
            self._conn.execute("DELETE FROM sandbox_sessions WHERE session_id = ?", (session_id,))
            self._conn.commit()

    def list_all(self) -> list[Session]:
        with self._lock:
            rows = self._conn.execute("SELECT * FROM sandbox_sessions ORDER BY created_at").fetchall()
            return [self._row_to_session(row) for row in rows]

    def list_expired(self, now: datetime | None = None) -> list[Session]:
        now = now or datetime.now()
        with self._lock:
            rows = self._conn.execute(
                "SELECT * FROM sandbox_sessions WHERE expires_at IS NOT NULL AND expires_at < ?",
                (now.isoformat(),),
            ).fetchall()
            return [self._row_to_session(row) for row in rows]

    def close(self) -> None:
        with self._lock:
            self._conn.commit()
            self._conn.close()

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        expires_at = row["expires_at"]
        return Session(
            session_id=row["session_id"],
            instance_id=row["instance_id"],
            owner=row["owner"],
            repo=row["repo"],
            branch=row["branch"],
            provider=row["provider"],
            status=parse_session_status(row["status"]),
            url=row["url"],
            instance_handle=row["instance_handle"],
            created_at=datetime.fromisoformat(row["created_at"]),
            last_accessed_at=datetime.fromisoformat(row["last_accessed_at"]),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            error_message=row["error_message"],
        )
