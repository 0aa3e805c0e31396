"""Submission state machine.

    received -> delivering -> delivered
                           -> failed -> received   (explicit requeue only)

Every transition is written together with its audit entry in one
transaction: if the audit append fails, the status change and the delivery
attempt roll back with it.
"""

import logging
import sqlite3
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any

from ..audit import AuditLog
from ..errors import InvalidTransition, SubmissionNotFound
from ..storage.database import Database, SubmissionStore
from ..storage.models import (
    SubmissionStatus,
    AttemptOutcome,
    AuditEvent,
    DeliveryAttempt,
    Submission,
    utcnow,
)

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    SubmissionStatus.RECEIVED: {SubmissionStatus.DELIVERING},
    SubmissionStatus.DELIVERING: {
        SubmissionStatus.DELIVERING,
        SubmissionStatus.DELIVERED,
        SubmissionStatus.FAILED,
    },
    SubmissionStatus.DELIVERED: set(),
    SubmissionStatus.FAILED: {SubmissionStatus.RECEIVED},
}


def check_transition(current: SubmissionStatus, target: SubmissionStatus):
    """Validate a status change, passing through delivering on first pickup."""
    path = [current]
    if current == SubmissionStatus.RECEIVED and target != SubmissionStatus.DELIVERING:
        path.append(SubmissionStatus.DELIVERING)
    path.append(target)
    for src, dst in zip(path, path[1:]):
        if dst not in ALLOWED_TRANSITIONS[src]:
            raise InvalidTransition(f"Cannot move submission from {current.value} to {target.value}")


def resolve_outcome(outcome: AttemptOutcome, exhausted: bool):
    """Map an attempt outcome to (new status, audit event)."""
    if outcome == AttemptOutcome.SUCCESS:
        return SubmissionStatus.DELIVERED, AuditEvent.DELIVERY_SUCCEEDED
    if outcome == AttemptOutcome.RETRYABLE_FAILURE and not exhausted:
        return SubmissionStatus.DELIVERING, AuditEvent.DELIVERY_ATTEMPTED
    return SubmissionStatus.FAILED, AuditEvent.DELIVERY_FAILED


@dataclass
class AttemptRecord:
    """What the dispatcher observed for one adapter call."""

    outcome: AttemptOutcome
    started_at: datetime
    finished_at: datetime
    http_status: Optional[int] = None
    error_detail: Optional[str] = None
    response_body: Optional[str] = None
    crm_lead_id: Optional[str] = None


@dataclass
class TransitionResult:
    submission_id: str
    previous_status: SubmissionStatus
    status: SubmissionStatus
    attempt_number: int
    event: AuditEvent


class SubmissionLifecycle:
    """Applies delivery outcomes and requeues to submissions."""

    def __init__(self, db: Database, store: SubmissionStore, audit: AuditLog):
        self.db = db
        self.store = store
        self.audit = audit

    def record_attempt(
        self,
        submission_id: str,
        record: AttemptRecord,
        cycle_attempt: int,
        exhausted: bool,
    ) -> TransitionResult:
        """Append a delivery attempt and apply its outcome in one unit of work."""
        with self.db.transaction() as conn:
            submission = self.store.get(submission_id, conn=conn)
            if submission is None:
                raise SubmissionNotFound(submission_id)

            new_status, event = resolve_outcome(record.outcome, exhausted)
            check_transition(submission.status, new_status)

            attempt_number = self.store.next_attempt_number(conn, submission_id)
            self.store.add_attempt(conn, DeliveryAttempt(
                id=str(uuid.uuid4()),
                submission_id=submission_id,
                attempt_number=attempt_number,
                outcome=record.outcome,
                http_status=record.http_status,
                error_detail=record.error_detail,
                response_body=record.response_body,
                started_at=record.started_at,
                finished_at=record.finished_at,
            ))

            now = utcnow()
            if new_status == SubmissionStatus.DELIVERED:
                self.store.update_delivery_state(
                    conn, submission_id, new_status, now,
                    crm_lead_id=record.crm_lead_id, delivered_at=now,
                )
            else:
                self.store.update_delivery_state(conn, submission_id, new_status, now)

            payload: Dict[str, Any] = {
                "attemptNumber": attempt_number,
                "cycleAttempt": cycle_attempt,
                "outcome": record.outcome.value,
                "httpStatus": record.http_status,
                "previousStatus": submission.status.value,
                "status": new_status.value,
            }
            if record.error_detail:
                payload["error"] = record.error_detail
            if record.crm_lead_id and new_status == SubmissionStatus.DELIVERED:
                payload["crmLeadId"] = record.crm_lead_id
            self.audit.record(conn, submission.client_id, event, submission_id, payload)

        return TransitionResult(
            submission_id=submission_id,
            previous_status=submission.status,
            status=new_status,
            attempt_number=attempt_number,
            event=event,
        )

    def reopen_failed(
        self,
        conn: sqlite3.Connection,
        submission_id: str,
        payload: Dict[str, Any],
    ) -> Submission:
        """Move a failed submission back to received and record the requeue.

        Runs on the caller's transaction so the job admission commits with it.
        """
        submission = self.store.get(submission_id, conn=conn)
        if submission is None:
            raise SubmissionNotFound(submission_id)
        check_transition(submission.status, SubmissionStatus.RECEIVED)

        self.store.update_delivery_state(conn, submission_id, SubmissionStatus.RECEIVED, utcnow())
        self.audit.record(
            conn,
            submission.client_id,
            AuditEvent.REQUEUED,
            submission_id,
            dict(payload, previousStatus=submission.status.value),
        )

        submission.status = SubmissionStatus.RECEIVED
        logger.info(f"[{submission_id}] Failed submission reopened for delivery")
        return submission

    def record_skip(self, submission_id: str, connection_id: str, event: str):
        """Mark a submission its connection does not subscribe to. Status is unchanged."""
        with self.db.transaction() as conn:
            submission = self.store.get(submission_id, conn=conn)
            if submission is None:
                raise SubmissionNotFound(submission_id)
            self.store.mark_delivery_skipped(conn, submission_id, utcnow())
            self.audit.record(
                conn,
                submission.client_id,
                AuditEvent.DELIVERY_SKIPPED,
                submission_id,
                {"connectionId": connection_id, "event": event, "status": submission.status.value},
            )
        logger.info(f"[{submission_id}] Delivery skipped: {connection_id} does not subscribe to {event}")
