"""SQLite persistence for submissions, delivery attempts, audit entries and jobs."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Optional, List, Dict, Any, Generator, Tuple

from .models import (
    Submission,
    SubmissionStatus,
    DeliveryAttempt,
    AttemptOutcome,
    Contact,
    Consent,
)

logger = logging.getLogger(__name__)

RESPONSE_BODY_LIMIT = 5000


def to_iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def from_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


class Database:
    """Connection management and schema for the pipeline's SQLite file.

    Reads use short-lived autocommit connections. Writes go through
    ``transaction()``, which takes the database write lock up front
    (``BEGIN IMMEDIATE``) so that only one writer mutates rows at a time.
    """

    def __init__(self, db_path: Optional[Path] = None):
        if db_path is None:
            db_path = Path.home() / ".lead-lander" / "leads.db"

        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(str(self.db_path), timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA foreign_keys=ON")
        return conn

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """Get an autocommit connection for reads."""
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """Run a block as one unit of work: commit on success, roll back on any error."""
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield conn
            conn.execute("COMMIT")
        except BaseException:
            if conn.in_transaction:
                conn.execute("ROLLBACK")
            raise
        finally:
            conn.close()

    def _init_db(self):
        """Initialize database schema."""
        with self.connection() as conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS submissions (
                    id TEXT PRIMARY KEY,
                    client_id TEXT NOT NULL,
                    account_id TEXT NOT NULL,
                    location_id TEXT,
                    program_id TEXT NOT NULL,

                    first_name TEXT NOT NULL,
                    last_name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    phone TEXT NOT NULL,

                    answers_json TEXT NOT NULL DEFAULT '{}',
                    metadata_json TEXT NOT NULL DEFAULT '{}',

                    status TEXT NOT NULL DEFAULT 'received',
                    idempotency_key TEXT NOT NULL,
                    crm_lead_id TEXT,
                    last_step_completed INTEGER,

                    consented INTEGER NOT NULL,
                    consent_text_version TEXT,
                    consent_timestamp TEXT,

                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    delivered_at TEXT,
                    delivery_skipped_at TEXT,

                    UNIQUE(client_id, idempotency_key)
                );

                CREATE TABLE IF NOT EXISTS delivery_attempts (
                    id TEXT PRIMARY KEY,
                    submission_id TEXT NOT NULL,
                    attempt_number INTEGER NOT NULL,
                    outcome TEXT NOT NULL,
                    http_status INTEGER,
                    error_detail TEXT,
                    response_body TEXT,
                    started_at TEXT NOT NULL,
                    finished_at TEXT NOT NULL,

                    UNIQUE(submission_id, attempt_number),
                    FOREIGN KEY (submission_id) REFERENCES submissions(id)
                );

                CREATE TABLE IF NOT EXISTS audit_log (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    client_id TEXT NOT NULL,
                    submission_id TEXT,
                    event TEXT NOT NULL,
                    payload_json TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS delivery_jobs (
                    job_key TEXT PRIMARY KEY,
                    submission_id TEXT NOT NULL,
                    client_id TEXT NOT NULL,
                    attempt_hint INTEGER NOT NULL DEFAULT 1,
                    state TEXT NOT NULL DEFAULT 'queued',
                    available_at TEXT NOT NULL,
                    lease_owner TEXT,
                    lease_expires_at TEXT,
                    last_error TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS quiz_sessions (
                    id TEXT PRIMARY KEY,
                    account_id TEXT NOT NULL,
                    state_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_submissions_client_status
                    ON submissions(client_id, status);
                CREATE INDEX IF NOT EXISTS idx_submissions_created
                    ON submissions(created_at);
                CREATE INDEX IF NOT EXISTS idx_attempts_submission
                    ON delivery_attempts(submission_id, attempt_number);
                CREATE INDEX IF NOT EXISTS idx_audit_client
                    ON audit_log(client_id, seq);
                CREATE INDEX IF NOT EXISTS idx_audit_submission
                    ON audit_log(submission_id, seq);
                CREATE INDEX IF NOT EXISTS idx_jobs_ready
                    ON delivery_jobs(state, available_at);

                CREATE TRIGGER IF NOT EXISTS audit_log_no_update
                BEFORE UPDATE ON audit_log
                BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;

                CREATE TRIGGER IF NOT EXISTS audit_log_no_delete
                BEFORE DELETE ON audit_log
                BEGIN SELECT RAISE(ABORT, 'audit_log is append-only'); END;

                CREATE TRIGGER IF NOT EXISTS delivery_attempts_no_update
                BEFORE UPDATE ON delivery_attempts
                BEGIN SELECT RAISE(ABORT, 'delivery_attempts is append-only'); END;
            """)


class SubmissionStore:
    """Reads and writes submissions and their delivery attempts."""

    def __init__(self, db: Database):
        self.db = db

    @contextmanager
    def _use(self, conn: Optional[sqlite3.Connection]) -> Generator[sqlite3.Connection, None, None]:
        if conn is not None:
            yield conn
        else:
            with self.db.connection() as own:
                yield own

    def _row_to_submission(self, row: sqlite3.Row) -> Submission:
        """Convert a database row to a Submission object."""
        return Submission(
            id=row["id"],
            client_id=row["client_id"],
            account_id=row["account_id"],
            location_id=row["location_id"],
            program_id=row["program_id"],
            contact=Contact(
                first_name=row["first_name"],
                last_name=row["last_name"],
                email=row["email"],
                phone=row["phone"],
            ),
            consent=Consent(
                consented=bool(row["consented"]),
                text_version=row["consent_text_version"] or "",
                timestamp=from_iso(row["consent_timestamp"]),
            ),
            idempotency_key=row["idempotency_key"],
            answers=json.loads(row["answers_json"] or "{}"),
            metadata=json.loads(row["metadata_json"] or "{}"),
            status=SubmissionStatus(row["status"]),
            crm_lead_id=row["crm_lead_id"],
            last_step_completed=row["last_step_completed"],
            created_at=from_iso(row["created_at"]),
            updated_at=from_iso(row["updated_at"]),
            delivered_at=from_iso(row["delivered_at"]),
            delivery_skipped_at=from_iso(row["delivery_skipped_at"]),
        )

    def _row_to_attempt(self, row: sqlite3.Row) -> DeliveryAttempt:
        return DeliveryAttempt(
            id=row["id"],
            submission_id=row["submission_id"],
            attempt_number=row["attempt_number"],
            outcome=AttemptOutcome(row["outcome"]),
            http_status=row["http_status"],
            error_detail=row["error_detail"],
            response_body=row["response_body"],
            started_at=from_iso(row["started_at"]),
            finished_at=from_iso(row["finished_at"]),
        )

    # === SUBMISSIONS ===

    def insert(self, conn: sqlite3.Connection, submission: Submission) -> bool:
        """Insert a submission. Returns False if its idempotency key already exists."""
        cursor = conn.execute(
            """INSERT OR IGNORE INTO submissions (
                id, client_id, account_id, location_id, program_id,
                first_name, last_name, email, phone,
                answers_json, metadata_json, status, idempotency_key,
                crm_lead_id, last_step_completed,
                consented, consent_text_version, consent_timestamp,
                created_at, updated_at, delivered_at, delivery_skipped_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                submission.id,
                submission.client_id,
                submission.account_id,
                submission.location_id,
                submission.program_id,
                submission.contact.first_name,
                submission.contact.last_name,
                submission.contact.email,
                submission.contact.phone,
                json.dumps(submission.answers),
                json.dumps(submission.metadata),
                submission.status.value,
                submission.idempotency_key,
                submission.crm_lead_id,
                submission.last_step_completed,
                1 if submission.consent.consented else 0,
                submission.consent.text_version,
                to_iso(submission.consent.timestamp),
                to_iso(submission.created_at),
                to_iso(submission.updated_at),
                to_iso(submission.delivered_at),
                to_iso(submission.delivery_skipped_at),
            ),
        )
        return cursor.rowcount == 1

    def get(self, submission_id: str, conn: Optional[sqlite3.Connection] = None) -> Optional[Submission]:
        with self._use(conn) as c:
            row = c.execute("SELECT * FROM submissions WHERE id = ?", (submission_id,)).fetchone()
            return self._row_to_submission(row) if row else None

    def find_by_idempotency_key(
        self,
        client_id: str,
        idempotency_key: str,
        conn: Optional[sqlite3.Connection] = None,
    ) -> Optional[Submission]:
        with self._use(conn) as c:
            row = c.execute(
                "SELECT * FROM submissions WHERE client_id = ? AND idempotency_key = ?",
                (client_id, idempotency_key),
            ).fetchone()
            return self._row_to_submission(row) if row else None

    def update_delivery_state(
        self,
        conn: sqlite3.Connection,
        submission_id: str,
        status: SubmissionStatus,
        updated_at: datetime,
        crm_lead_id: Optional[str] = None,
        delivered_at: Optional[datetime] = None,
    ):
        """Write status, crm_lead_id and delivered_at together."""
        conn.execute(
            """UPDATE submissions
               SET status = ?, crm_lead_id = ?, delivered_at = ?, updated_at = ?
               WHERE id = ?""",
            (status.value, crm_lead_id, to_iso(delivered_at), to_iso(updated_at), submission_id),
        )

    def mark_delivery_skipped(self, conn: sqlite3.Connection, submission_id: str, skipped_at: datetime):
        """Flag a submission whose connection does not take it, so backfill leaves it alone."""
        conn.execute(
            "UPDATE submissions SET delivery_skipped_at = ?, updated_at = ? WHERE id = ?",
            (to_iso(skipped_at), to_iso(skipped_at), submission_id),
        )

    def list_submissions(
        self,
        client_id: str,
        status: Optional[SubmissionStatus] = None,
        program_id: Optional[str] = None,
        location_id: Optional[str] = None,
        account_id: Optional[str] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> Tuple[List[Submission], int]:
        """List a client's submissions newest first. Returns (page, total)."""
        wheres = ["client_id = ?"]
        params: List[Any] = [client_id]

        if status:
            wheres.append("status = ?")
            params.append(status.value)
        if program_id:
            wheres.append("program_id = ?")
            params.append(program_id)
        if location_id:
            wheres.append("location_id = ?")
            params.append(location_id)
        if account_id:
            wheres.append("account_id = ?")
            params.append(account_id)
        if created_from:
            wheres.append("created_at >= ?")
            params.append(to_iso(created_from))
        if created_to:
            wheres.append("created_at < ?")
            params.append(to_iso(created_to))

        where_sql = " WHERE " + " AND ".join(wheres)

        with self.db.connection() as conn:
            total = conn.execute(f"SELECT COUNT(*) FROM submissions{where_sql}", params).fetchone()[0]
            rows = conn.execute(
                f"SELECT * FROM submissions{where_sql} ORDER BY created_at DESC, id LIMIT ? OFFSET ?",
                params + [limit, offset],
            ).fetchall()

        return [self._row_to_submission(r) for r in rows], total

    def find_undelivered(self, created_before: datetime, limit: int = 200) -> List[Submission]:
        """Submissions still waiting for a CRM lead id, oldest first. Skipped ones are excluded."""
        with self.db.connection() as conn:
            rows = conn.execute(
                """SELECT * FROM submissions
                   WHERE crm_lead_id IS NULL
                     AND delivery_skipped_at IS NULL
                     AND created_at < ?
                     AND status IN (?, ?)
                   ORDER BY created_at ASC
                   LIMIT ?""",
                (
                    to_iso(created_before),
                    SubmissionStatus.RECEIVED.value,
                    SubmissionStatus.DELIVERING.value,
                    limit,
                ),
            ).fetchall()
        return [self._row_to_submission(r) for r in rows]

    def count_by_status(self, client_id: str) -> Dict[str, int]:
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT status, COUNT(*) AS n FROM submissions WHERE client_id = ? GROUP BY status",
                (client_id,),
            ).fetchall()
        counts = {s.value: 0 for s in SubmissionStatus}
        counts.update({row["status"]: row["n"] for row in rows})
        return counts

    # === DELIVERY ATTEMPTS ===

    def next_attempt_number(self, conn: sqlite3.Connection, submission_id: str) -> int:
        row = conn.execute(
            "SELECT MAX(attempt_number) FROM delivery_attempts WHERE submission_id = ?",
            (submission_id,),
        ).fetchone()
        return (row[0] or 0) + 1

    def add_attempt(self, conn: sqlite3.Connection, attempt: DeliveryAttempt):
        body = attempt.response_body
        if body and len(body) > RESPONSE_BODY_LIMIT:
            body = body[:RESPONSE_BODY_LIMIT]
        conn.execute(
            """INSERT INTO delivery_attempts (
                id, submission_id, attempt_number, outcome, http_status,
                error_detail, response_body, started_at, finished_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
            (
                attempt.id,
                attempt.submission_id,
                attempt.attempt_number,
                attempt.outcome.value,
                attempt.http_status,
                attempt.error_detail,
                body,
                to_iso(attempt.started_at),
                to_iso(attempt.finished_at),
            ),
        )

    def list_attempts(self, submission_id: str) -> List[DeliveryAttempt]:
        """Delivery attempt history in attempt order."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT * FROM delivery_attempts WHERE submission_id = ? ORDER BY attempt_number",
                (submission_id,),
            ).fetchall()
        return [self._row_to_attempt(r) for r in rows]
