"""Persistence for in-progress quiz sessions between HTTP requests."""

import json
from typing import Optional

from ..storage.database import Database, to_iso
from ..storage.models import utcnow
from .engine import QuizSession


class QuizSessionStore:
    """Keeps quiz sessions until they are converted into a submission."""

    def __init__(self, db: Database):
        self.db = db

    def save(self, session: QuizSession):
        with self.db.transaction() as conn:
            conn.execute(
                """INSERT INTO quiz_sessions (id, account_id, state_json, created_at, updated_at)
                   VALUES (?, ?, ?, ?, ?)
                   ON CONFLICT(id) DO UPDATE SET
                       state_json = excluded.state_json,
                       updated_at = excluded.updated_at""",
                (
                    session.id,
                    session.account_id,
                    json.dumps(session.to_dict()),
                    to_iso(session.created_at),
                    to_iso(utcnow()),
                ),
            )

    def get(self, session_id: str) -> Optional[QuizSession]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT state_json FROM quiz_sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if row is None:
            return None
        return QuizSession.from_dict(json.loads(row["state_json"]))

    def delete(self, session_id: str, conn=None) -> bool:
        if conn is not None:
            return conn.execute("DELETE FROM quiz_sessions WHERE id = ?", (session_id,)).rowcount > 0
        with self.db.transaction() as own:
            return own.execute("DELETE FROM quiz_sessions WHERE id = ?", (session_id,)).rowcount > 0
