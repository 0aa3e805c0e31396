"""Append-only, tenant-scoped audit trail."""

import json
import logging
import sqlite3
import uuid
from typing import Optional, List, Dict, Any

from ..errors import AuditWriteFailure
from ..storage.database import Database, to_iso, from_iso
from ..storage.models import AuditLogEntry, AuditEvent, utcnow

logger = logging.getLogger(__name__)


class AuditLog:
    """Writes and reads audit entries.

    ``append`` runs on the caller's connection so the entry commits or rolls
    back together with the mutation it describes. There is no update or
    delete, and no retry: a failed append raises ``AuditWriteFailure`` and
    the enclosing transaction is expected to abort.
    """

    def __init__(self, db: Database):
        self.db = db

    @staticmethod
    def new_entry(
        client_id: str,
        event: AuditEvent,
        submission_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        return AuditLogEntry(
            id=str(uuid.uuid4()),
            client_id=client_id,
            event=event,
            submission_id=submission_id,
            payload=payload or {},
            created_at=utcnow(),
        )

    def append(self, conn: sqlite3.Connection, entry: AuditLogEntry) -> AuditLogEntry:
        try:
            conn.execute(
                """INSERT INTO audit_log (id, client_id, submission_id, event, payload_json, created_at)
                   VALUES (?, ?, ?, ?, ?, ?)""",
                (
                    entry.id,
                    entry.client_id,
                    entry.submission_id,
                    entry.event.value,
                    json.dumps(entry.payload, default=str),
                    to_iso(entry.created_at),
                ),
            )
        except (sqlite3.Error, TypeError, ValueError) as e:
            logger.error(f"[{entry.submission_id}] Audit append failed for {entry.event.value}: {e}")
            raise AuditWriteFailure(str(e)) from e
        return entry

    def record(
        self,
        conn: sqlite3.Connection,
        client_id: str,
        event: AuditEvent,
        submission_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditLogEntry:
        """Build and append an entry in one call."""
        return self.append(conn, self.new_entry(client_id, event, submission_id, payload))

    def query(
        self,
        client_id: str,
        submission_id: Optional[str] = None,
        limit: int = 50,
    ) -> List[AuditLogEntry]:
        """Entries for a client (optionally one submission), newest first."""
        sql = "SELECT * FROM audit_log WHERE client_id = ?"
        params: List[Any] = [client_id]
        if submission_id:
            sql += " AND submission_id = ?"
            params.append(submission_id)
        sql += " ORDER BY seq DESC LIMIT ?"
        params.append(max(0, int(limit)))

        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()

        return [
            AuditLogEntry(
                id=row["id"],
                client_id=row["client_id"],
                submission_id=row["submission_id"],
                event=AuditEvent(row["event"]),
                payload=json.loads(row["payload_json"] or "{}"),
                created_at=from_iso(row["created_at"]),
            )
            for row in rows
        ]
