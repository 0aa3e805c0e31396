"""Manual requeue and backfill of undelivered submissions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional, List

from ..audit import AuditLog
from ..authz import Caller, authorize_requeue
from ..errors import InvalidTransition, SubmissionNotFound
from ..storage.database import Database, SubmissionStore
from ..storage.models import AuditEvent, SubmissionStatus, Submission, utcnow
from .lifecycle import SubmissionLifecycle
from .queue import DeliveryQueue

logger = logging.getLogger(__name__)


@dataclass
class RequeueResult:
    submission_id: str
    status: SubmissionStatus
    enqueued: bool


@dataclass
class BackfillReport:
    cutoff: datetime
    dry_run: bool
    candidates: List[str] = field(default_factory=list)
    enqueued: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class RequeueService:
    """Re-admits submissions to the delivery queue under their existing job key.

    Both entry points are idempotent: a submission whose job is still queued
    or in flight is left alone, and a ``requeued`` audit entry is written only
    when a job is actually admitted.
    """

    def __init__(self, db: Database, store: SubmissionStore, audit: AuditLog, queue: DeliveryQueue):
        self.db = db
        self.store = store
        self.audit = audit
        self.queue = queue
        self.lifecycle = SubmissionLifecycle(db, store, audit)

    def requeue(self, submission_id: str, caller: Caller) -> RequeueResult:
        submission = self.store.get(submission_id)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        authorize_requeue(caller, submission)

        payload = {"requestedBy": caller.user_id, "role": caller.role.value, "source": "manual"}
        with self.db.transaction() as conn:
            current = self.store.get(submission_id, conn=conn)
            if current.status == SubmissionStatus.DELIVERED:
                raise InvalidTransition(f"Submission {submission_id} is already delivered")
            if current.status == SubmissionStatus.FAILED:
                self.lifecycle.reopen_failed(conn, submission_id, payload)
                enqueued = self.queue.enqueue(submission_id, current.client_id, conn=conn)
            else:
                enqueued = self._admit(conn, current, payload)

        status = SubmissionStatus.RECEIVED if current.status == SubmissionStatus.FAILED else current.status
        if enqueued:
            logger.info(f"[{submission_id}] Requeued by {caller.user_id}")
        else:
            logger.info(f"[{submission_id}] Requeue ignored, delivery already pending")
        return RequeueResult(submission_id, status, enqueued)

    def backfill(
        self,
        older_than: timedelta,
        limit: int = 200,
        dry_run: bool = False,
        now: Optional[datetime] = None,
    ) -> BackfillReport:
        """Re-enqueue received/delivering submissions with no CRM lead id created before now - older_than."""
        cutoff = (now or utcnow()) - older_than
        report = BackfillReport(cutoff=cutoff, dry_run=dry_run)

        for submission in self.store.find_undelivered(cutoff, limit):
            report.candidates.append(submission.id)
            if dry_run:
                continue
            with self.db.transaction() as conn:
                admitted = self._admit(conn, submission, {"source": "backfill", "cutoff": cutoff.isoformat()})
            (report.enqueued if admitted else report.skipped).append(submission.id)

        logger.info(
            f"Backfill (cutoff {cutoff.isoformat()}, dry_run={dry_run}): "
            f"{len(report.candidates)} candidates, {len(report.enqueued)} enqueued"
        )
        return report

    def _admit(self, conn, submission: Submission, payload) -> bool:
        if not self.queue.enqueue(submission.id, submission.client_id, conn=conn):
            return False
        self.audit.record(
            conn,
            submission.client_id,
            AuditEvent.REQUEUED,
            submission.id,
            dict(payload, previousStatus=submission.status.value),
        )
        return True
