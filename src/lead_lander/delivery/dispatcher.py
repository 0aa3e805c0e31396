"""Delivery dispatcher: turns queued jobs into CRM deliveries."""

import logging
from dataclasses import dataclass
from typing import Optional, List, Dict

from ..audit import AuditLog
from ..catalog import CatalogStore, ConnectorType
from ..errors import (
    AuditWriteFailure,
    InvalidTransition,
    SubmissionNotFound,
    RetryableDeliveryError,
    PermanentDeliveryError,
)
from ..integrations import LeadNotifier
from ..storage.database import Database, SubmissionStore
from ..storage.models import SubmissionStatus, AttemptOutcome, utcnow
from .adapters import CRMAdapter, build_default_adapters, TRIGGER_SUBMISSION_CREATED
from .lifecycle import SubmissionLifecycle, AttemptRecord
from .queue import DeliveryQueue, DeliveryJob
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class DispatchResult:
    """What happened to one job."""

    submission_id: str
    action: str  # delivered, retry_scheduled, failed, skipped, filtered, deferred
    status: Optional[SubmissionStatus] = None
    attempt_number: Optional[int] = None
    error: Optional[str] = None


class DeliveryDispatcher:
    """Consumes delivery jobs and applies each attempt's outcome."""

    def __init__(
        self,
        db: Database,
        store: SubmissionStore,
        audit: AuditLog,
        queue: DeliveryQueue,
        catalog: CatalogStore,
        policy: Optional[RetryPolicy] = None,
        adapters: Optional[Dict[ConnectorType, CRMAdapter]] = None,
        notifier: Optional[LeadNotifier] = None,
    ):
        self.store = store
        self.queue = queue
        self.catalog = catalog
        self.policy = policy or RetryPolicy()
        self.adapters = adapters if adapters is not None else build_default_adapters()
        self.lifecycle = SubmissionLifecycle(db, store, audit)
        self.notifier = notifier

    def process_next(self, worker_id: Optional[str] = None) -> Optional[DispatchResult]:
        """Claim and process one ready job. Returns None when the queue has nothing ready."""
        job = self.queue.claim(worker_id)
        if job is None:
            return None
        try:
            return self.process(job)
        except Exception as e:
            # The lease expires and the job is picked up again.
            logger.exception(f"[{job.submission_id}] Dispatcher error: {e}")
            return DispatchResult(job.submission_id, "deferred", error=str(e))

    def run_until_idle(self, max_jobs: Optional[int] = None, worker_id: Optional[str] = None) -> List[DispatchResult]:
        """Process ready jobs until none are left (or max_jobs is reached)."""
        results = []
        while max_jobs is None or len(results) < max_jobs:
            result = self.process_next(worker_id)
            if result is None:
                break
            results.append(result)
        return results

    def process(self, job: DeliveryJob) -> DispatchResult:
        submission = self.store.get(job.submission_id)
        if submission is None:
            logger.warning(f"[{job.submission_id}] Job for unknown submission dropped")
            self.queue.complete(job)
            return DispatchResult(job.submission_id, "skipped", error="submission not found")

        if submission.status.is_terminal:
            logger.info(f"[{submission.id}] Submission is {submission.status.value}, job dropped")
            self.queue.complete(job)
            return DispatchResult(submission.id, "skipped", status=submission.status)

        connection = self.catalog.resolve_connection(submission.account_id)
        adapter = self.adapters.get(connection.type) if connection else None

        if connection is not None and adapter is not None:
            if not adapter.handles_event(connection, TRIGGER_SUBMISSION_CREATED):
                try:
                    self.lifecycle.record_skip(submission.id, connection.id, TRIGGER_SUBMISSION_CREATED)
                except AuditWriteFailure as e:
                    self.queue.reschedule(job, job.attempt_hint, self.policy.delay_for(job.attempt_hint), error=str(e))
                    return DispatchResult(submission.id, "deferred", error=str(e))
                self.queue.complete(job)
                return DispatchResult(submission.id, "filtered", status=submission.status)

        started_at = utcnow()
        crm_lead_id = None
        http_status = None
        response_body = None
        error = None

        if connection is None:
            outcome = AttemptOutcome.PERMANENT_FAILURE
            error = f"No CRM connection configured for account {submission.account_id}"
        elif adapter is None:
            outcome = AttemptOutcome.PERMANENT_FAILURE
            error = f"No adapter for connector type {connection.type.value}"
        else:
            logger.info(
                f"[{submission.id}] Delivering via {connection.type.value} "
                f"(cycle attempt {job.attempt_hint}/{self.policy.max_attempts})"
            )
            try:
                result = adapter.deliver(submission, connection)
                outcome = AttemptOutcome.SUCCESS
                http_status = result.http_status
                response_body = result.response_body
                crm_lead_id = result.crm_lead_id or submission.id
            except RetryableDeliveryError as e:
                outcome = AttemptOutcome.RETRYABLE_FAILURE
                error, http_status, response_body = str(e), e.http_status, e.response_body
            except PermanentDeliveryError as e:
                outcome = AttemptOutcome.PERMANENT_FAILURE
                error, http_status, response_body = str(e), e.http_status, e.response_body
            except Exception as e:
                logger.exception(f"[{submission.id}] Adapter raised unexpectedly: {e}")
                outcome = AttemptOutcome.RETRYABLE_FAILURE
                error = f"{type(e).__name__}: {e}"

        exhausted = (
            outcome == AttemptOutcome.RETRYABLE_FAILURE
            and self.policy.is_exhausted(job.attempt_hint)
        )
        record = AttemptRecord(
            outcome=outcome,
            started_at=started_at,
            finished_at=utcnow(),
            http_status=http_status,
            error_detail=error,
            response_body=response_body,
            crm_lead_id=crm_lead_id,
        )

        try:
            transition = self.lifecycle.record_attempt(submission.id, record, job.attempt_hint, exhausted)
        except AuditWriteFailure as e:
            # Nothing was written; the same attempt runs again later.
            delay = self.policy.delay_for(job.attempt_hint)
            self.queue.reschedule(job, job.attempt_hint, delay, error=f"audit write failed: {e}")
            return DispatchResult(submission.id, "deferred", error=str(e))
        except (InvalidTransition, SubmissionNotFound) as e:
            logger.warning(f"[{submission.id}] Attempt not recorded: {e}")
            self.queue.complete(job)
            return DispatchResult(submission.id, "skipped", error=str(e))

        if transition.status == SubmissionStatus.DELIVERED:
            self.queue.complete(job)
            logger.info(f"[{submission.id}] Delivered (CRM lead {crm_lead_id})")
            self._notify(submission)
            return DispatchResult(
                submission.id, "delivered", transition.status, transition.attempt_number
            )

        if transition.status == SubmissionStatus.DELIVERING:
            delay = self.policy.delay_for(job.attempt_hint)
            self.queue.reschedule(job, job.attempt_hint + 1, delay, error=error)
            logger.warning(f"[{submission.id}] Attempt {transition.attempt_number} failed, retrying: {error}")
            return DispatchResult(
                submission.id, "retry_scheduled", transition.status, transition.attempt_number, error
            )

        self.queue.abandon(job, error=error)
        logger.error(f"[{submission.id}] Delivery failed after attempt {transition.attempt_number}: {error}")
        return DispatchResult(
            submission.id, "failed", transition.status, transition.attempt_number, error
        )

    def _notify(self, submission):
        """Send the lead notification. The delivery outcome is already committed."""
        if self.notifier is None:
            return
        try:
            self.notifier.notify_delivered(submission)
        except Exception as e:
            logger.exception(f"[{submission.id}] Lead notification error: {e}")
