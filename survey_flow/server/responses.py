"""ResponseStore: submitted questionnaires and e-mail addresses in SQLite."""

from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS survey_responses (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    participant_id TEXT NOT NULL,
    treatment_group TEXT NOT NULL,
    response_data TEXT NOT NULL DEFAULT '{}',
    conversation_log TEXT NOT NULL DEFAULT '[]',
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS emails (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    email_address TEXT NOT NULL,
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_survey_responses_participant ON survey_responses(participant_id);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ResponseStore:
    """Append-only response storage. ``":memory:"`` keeps everything in RAM."""

    def __init__(self, db_path: str | Path = ":memory:") -> None:
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        # The ASGI server may call us from a worker thread.
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._conn.executescript(SCHEMA_SQL)

    def participant_exists(self, participant_id: str) -> bool:
        row = self._conn.execute(
            "SELECT 1 FROM survey_responses WHERE participant_id = ? LIMIT 1",
            (participant_id,),
        ).fetchone()
        return row is not None

    def save_response(
        self,
        participant_id: str,
        treatment_group: str | int,
        response_data: dict,
        conversation_log: str,
    ) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO survey_responses "
                "(participant_id, treatment_group, response_data, conversation_log, created_at) "
                "VALUES (?, ?, ?, ?, ?)",
                (
                    participant_id,
                    str(treatment_group),
                    json.dumps(response_data, ensure_ascii=False),
                    conversation_log,
                    _now(),
                ),
            )

    def save_email(self, email: str) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO emails (email_address, created_at) VALUES (?, ?)",
                (email, _now()),
            )

    def responses(self) -> list[dict]:
        rows = self._conn.execute(
            "SELECT participant_id, treatment_group, response_data, conversation_log, created_at "
            "FROM survey_responses ORDER BY id"
        ).fetchall()
        return [
            {
                "participant_id": row["participant_id"],
                "treatment_group": row["treatment_group"],
                "response_data": json.loads(row["response_data"]),
                "conversation_log": row["conversation_log"],
                "created_at": row["created_at"],
            }
            for row in rows
        ]

    def emails(self) -> list[str]:
        rows = self._conn.execute("SELECT email_address FROM emails ORDER BY id").fetchall()
        return [row["email_address"] for row in rows]

    def close(self) -> None:
        self._conn.close()
