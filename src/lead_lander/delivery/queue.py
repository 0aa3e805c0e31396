"""Persistent delivery queue with per-submission job keys.

One row per job key. Enqueueing a key that is already queued or in flight
is a no-op, so duplicate enqueues (a retried request, a backfill run racing
the ingestor) collapse into the existing job instead of starting a parallel
delivery. Claimed jobs carry a lease; a job whose lease expires (its worker
died) becomes claimable again, which gives at-least-once delivery to workers.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, List, Dict, Any

from ..storage.database import Database, to_iso, from_iso
from ..storage.models import utcnow

logger = logging.getLogger(__name__)


class JobState(Enum):
    QUEUED = "queued"
    ACTIVE = "active"
    ABANDONED = "abandoned"  # dead letter: exhausted or permanently failed


def job_key_for(submission_id: str) -> str:
    """Deterministic job key for a submission's delivery job."""
    return f"create-{submission_id}"


@dataclass
class DeliveryJob:
    """A queued delivery job. The persisted envelope is {submissionId, attemptHint}."""

    job_key: str
    submission_id: str
    client_id: str
    attempt_hint: int = 1
    state: JobState = JobState.QUEUED
    available_at: Optional[datetime] = None
    lease_owner: Optional[str] = None
    lease_expires_at: Optional[datetime] = None
    last_error: Optional[str] = None

    @property
    def envelope(self) -> Dict[str, Any]:
        return {"submissionId": self.submission_id, "attemptHint": self.attempt_hint}


class DeliveryQueue:
    """SQLite-backed queue with delayed re-delivery and leases."""

    def __init__(self, db: Database, lease_seconds: int = 120):
        self.db = db
        self.lease_seconds = lease_seconds

    def _row_to_job(self, row) -> DeliveryJob:
        return DeliveryJob(
            job_key=row["job_key"],
            submission_id=row["submission_id"],
            client_id=row["client_id"],
            attempt_hint=row["attempt_hint"],
            state=JobState(row["state"]),
            available_at=from_iso(row["available_at"]),
            lease_owner=row["lease_owner"],
            lease_expires_at=from_iso(row["lease_expires_at"]),
            last_error=row["last_error"],
        )

    def enqueue(
        self,
        submission_id: str,
        client_id: str,
        attempt_hint: int = 1,
        delay_seconds: float = 0.0,
        conn: Optional[sqlite3.Connection] = None,
    ) -> bool:
        """Admit a job for a submission. Returns False if a live job already holds the key.

        An abandoned job under the same key is revived, which is how a
        requeued submission gets a fresh delivery cycle. Pass ``conn`` to
        admit the job inside the caller's transaction.
        """
        if conn is not None:
            return self._admit(conn, submission_id, client_id, attempt_hint, delay_seconds)
        with self.db.transaction() as own:
            return self._admit(own, submission_id, client_id, attempt_hint, delay_seconds)

    def _admit(
        self,
        conn: sqlite3.Connection,
        submission_id: str,
        client_id: str,
        attempt_hint: int,
        delay_seconds: float,
    ) -> bool:
        job_key = job_key_for(submission_id)
        now = utcnow()
        available_at = now + timedelta(seconds=delay_seconds)

        cursor = conn.execute(
            """INSERT INTO delivery_jobs (
                job_key, submission_id, client_id, attempt_hint, state,
                available_at, created_at, updated_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(job_key) DO NOTHING""",
            (
                job_key, submission_id, client_id, attempt_hint,
                JobState.QUEUED.value, to_iso(available_at), to_iso(now), to_iso(now),
            ),
        )
        if cursor.rowcount == 1:
            logger.info(f"[{submission_id}] Delivery job queued ({job_key})")
            return True

        cursor = conn.execute(
            """UPDATE delivery_jobs
               SET state = ?, attempt_hint = ?, available_at = ?, lease_owner = NULL,
                   lease_expires_at = NULL, last_error = NULL, updated_at = ?
               WHERE job_key = ? AND state = ?""",
            (
                JobState.QUEUED.value, attempt_hint, to_iso(available_at), to_iso(now),
                job_key, JobState.ABANDONED.value,
            ),
        )
        if cursor.rowcount == 1:
            logger.info(f"[{submission_id}] Abandoned delivery job revived ({job_key})")
            return True

        logger.info(f"[{submission_id}] Delivery job already pending, enqueue ignored")
        return False

    def claim(self, worker_id: Optional[str] = None) -> Optional[DeliveryJob]:
        """Take the next ready job and lease it to a worker."""
        worker_id = worker_id or uuid.uuid4().hex
        now = utcnow()
        lease_expires = now + timedelta(seconds=self.lease_seconds)

        with self.db.transaction() as conn:
            row = conn.execute(
                """SELECT * FROM delivery_jobs
                   WHERE (state = ? AND available_at <= ?)
                      OR (state = ? AND lease_expires_at <= ?)
                   ORDER BY available_at ASC
                   LIMIT 1""",
                (JobState.QUEUED.value, to_iso(now), JobState.ACTIVE.value, to_iso(now)),
            ).fetchone()
            if row is None:
                return None

            if row["state"] == JobState.ACTIVE.value:
                logger.warning(
                    f"[{row['submission_id']}] Lease of {row['lease_owner']} expired, re-delivering"
                )

            conn.execute(
                """UPDATE delivery_jobs
                   SET state = ?, lease_owner = ?, lease_expires_at = ?, updated_at = ?
                   WHERE job_key = ?""",
                (JobState.ACTIVE.value, worker_id, to_iso(lease_expires), to_iso(now), row["job_key"]),
            )

        job = self._row_to_job(row)
        job.state = JobState.ACTIVE
        job.lease_owner = worker_id
        job.lease_expires_at = lease_expires
        return job

    def complete(self, job: DeliveryJob) -> bool:
        """Remove a finished job."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                "DELETE FROM delivery_jobs WHERE job_key = ? AND lease_owner IS ?",
                (job.job_key, job.lease_owner),
            )
            updated = cursor.rowcount == 1
        return updated

    def reschedule(
        self,
        job: DeliveryJob,
        attempt_hint: int,
        delay_seconds: float,
        error: Optional[str] = None,
    ) -> bool:
        """Put a job back for delayed re-delivery."""
        now = utcnow()
        available_at = now + timedelta(seconds=delay_seconds)
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE delivery_jobs
                   SET state = ?, attempt_hint = ?, available_at = ?, lease_owner = NULL,
                       lease_expires_at = NULL, last_error = ?, updated_at = ?
                   WHERE job_key = ? AND lease_owner IS ?""",
                (
                    JobState.QUEUED.value, attempt_hint, to_iso(available_at), error,
                    to_iso(now), job.job_key, job.lease_owner,
                ),
            )
            updated = cursor.rowcount == 1
        if updated:
            logger.info(
                f"[{job.submission_id}] Retry {attempt_hint} scheduled in {delay_seconds:.1f}s"
            )
            return True
        return False

    def abandon(self, job: DeliveryJob, error: Optional[str] = None) -> bool:
        """Move a job to the dead letter state. It is never retried automatically."""
        with self.db.transaction() as conn:
            cursor = conn.execute(
                """UPDATE delivery_jobs
                   SET state = ?, lease_owner = NULL, lease_expires_at = NULL,
                       last_error = ?, updated_at = ?
                   WHERE job_key = ? AND lease_owner IS ?""",
                (JobState.ABANDONED.value, error, to_iso(utcnow()), job.job_key, job.lease_owner),
            )
            updated = cursor.rowcount == 1
        if updated:
            logger.warning(f"[{job.submission_id}] Delivery job abandoned: {error}")
            return True
        return False

    def get(self, submission_id: str) -> Optional[DeliveryJob]:
        with self.db.connection() as conn:
            row = conn.execute(
                "SELECT * FROM delivery_jobs WHERE job_key = ?", (job_key_for(submission_id),)
            ).fetchone()
        return self._row_to_job(row) if row else None

    def depth(self) -> Dict[str, int]:
        """Job counts per state."""
        with self.db.connection() as conn:
            rows = conn.execute(
                "SELECT state, COUNT(*) AS n FROM delivery_jobs GROUP BY state"
            ).fetchall()
        counts = {state.value: 0 for state in JobState}
        counts.update({row["state"]: row["n"] for row in rows})
        return counts

    def list_abandoned(self, client_id: Optional[str] = None, limit: int = 100) -> List[DeliveryJob]:
        sql = "SELECT * FROM delivery_jobs WHERE state = ?"
        params: List[Any] = [JobState.ABANDONED.value]
        if client_id:
            sql += " AND client_id = ?"
            params.append(client_id)
        sql += " ORDER BY updated_at DESC LIMIT ?"
        params.append(limit)
        with self.db.connection() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_job(r) for r in rows]
