"""SQLiteStateStore: session key/value rows using stdlib sqlite3."""

from __future__ import annotations

import sqlite3
from pathlib import Path

from ..core.state_store import PersistedStateStore

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS session_state (
    session_id TEXT NOT NULL,
    key TEXT NOT NULL,
    value TEXT NOT NULL,
    PRIMARY KEY (session_id, key)
);
"""


class SQLiteStateStore(PersistedStateStore):
    """Session-scoped rows in a shared SQLite database."""

    def __init__(self, db_path: str | Path, session_id: str) -> None:
        self.db_path = Path(db_path)
        self.session_id = session_id
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self.db_path))
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)

    def get(self, key: str) -> str | None:
        row = self._conn.execute(
            "SELECT value FROM session_state WHERE session_id = ? AND key = ?",
            (self.session_id, key),
        ).fetchone()
        return row["value"] if row else None

    def set(self, key: str, value: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO session_state (session_id, key, value) VALUES (?, ?, ?) "
                "ON CONFLICT(session_id, key) DO UPDATE SET value = excluded.value",
                (self.session_id, key, str(value)),
            )

    def remove(self, key: str) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM session_state WHERE session_id = ? AND key = ?",
                (self.session_id, key),
            )

    def keys(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT key FROM session_state WHERE session_id = ? ORDER BY key",
            (self.session_id,),
        ).fetchall()
        return [row["key"] for row in rows]

    def clear(self) -> None:
        with self._conn:
            self._conn.execute(
                "DELETE FROM session_state WHERE session_id = ?", (self.session_id,),
            )

    def list_sessions(self) -> list[str]:
        rows = self._conn.execute(
            "SELECT DISTINCT session_id FROM session_state ORDER BY session_id"
        ).fetchall()
        return [row["session_id"] for row in rows]

    def close(self) -> None:
        self._conn.close()
