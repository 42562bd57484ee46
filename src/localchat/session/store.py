"""Chat history storage.

The reconciler only needs ``save`` / ``list`` / ``delete`` with
last-write-wins semantics; any object with those methods can be used.
"""

from __future__ import annotations

import sqlite3
from pathlib import Path
from typing import Protocol

from pydantic import TypeAdapter

from localchat.types import ChatSession, Message

_MESSAGES = TypeAdapter(list[Message])


class HistoryStore(Protocol):
    def save(self, session: ChatSession) -> None: ...

    def list(self) -> list[ChatSession]: ...

    def delete(self, session_id: str) -> None: ...


class InMemoryHistoryStore:
    """Dict-backed store, mostly for tests and throwaway sessions."""

    def __init__(self) -> None:
        self._sessions: dict[str, ChatSession] = {}

    def save(self, session: ChatSession) -> None:
        self._sessions[session.id] = session.model_copy(deep=True)

    def list(self) -> list[ChatSession]:
        return sorted(self._sessions.values(), key=lambda s: s.updated_at, reverse=True)

    def delete(self, session_id: str) -> None:
        self._sessions.pop(session_id, None)


class SQLiteHistoryStore:
    """SQLite-backed session store: one row per session, upserted by id."""

    def __init__(self, db_path: str = "~/.localchat/history.db"):
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)
        self._conn = sqlite3.connect(self.db_path)
        self._init_schema()

    def _init_schema(self):
        self._conn.executescript("""
            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL,
                messages TEXT NOT NULL DEFAULT '[]',
                created_at INTEGER NOT NULL,
                updated_at INTEGER NOT NULL
            );
            CREATE INDEX IF NOT EXISTS idx_sessions_updated ON sessions(updated_at);
        """)
        self._conn.commit()

    def save(self, session: ChatSession) -> None:
        """Insert or replace *session* (last write wins)."""
        messages = _MESSAGES.dump_json(session.messages).decode()
        self._conn.execute(
            "INSERT INTO sessions (id, title, messages, created_at, updated_at) "
            "VALUES (?, ?, ?, ?, ?) "
            "ON CONFLICT(id) DO UPDATE SET title=?, messages=?, updated_at=?",
            (session.id, session.title, messages, session.created_at,
             session.updated_at, session.title, messages, session.updated_at),
        )
        self._conn.commit()

    def get(self, session_id: str) -> ChatSession | None:
        row = self._conn.execute(
            "SELECT id, title, messages, created_at, updated_at FROM sessions "
            "WHERE id = ?",
            (session_id,),
        ).fetchone()
        return self._to_session(row) if row else None

    def list(self) -> list[ChatSession]:
        """All sessions, most recently updated first."""
        rows = self._conn.execute(
            "SELECT id, title, messages, created_at, updated_at FROM sessions "
            "ORDER BY updated_at DESC",
        ).fetchall()
        return [self._to_session(row) for row in rows]

    def delete(self, session_id: str) -> None:
        self._conn.execute("DELETE FROM sessions WHERE id = ?", (session_id,))
        self._conn.commit()

    @staticmethod
    def _to_session(row: tuple) -> ChatSession:
        sid, title, messages_json, created_at, updated_at = row
        return ChatSession(
            id=sid,
            title=title,
            messages=_MESSAGES.validate_json(messages_json),
            created_at=created_at,
            updated_at=updated_at,
        )

    def close(self):
        self._conn.close()

