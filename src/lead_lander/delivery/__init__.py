"""Asynchronous delivery of submissions to CRMs."""

from .dispatcher import DeliveryDispatcher, DispatchResult
from .lifecycle import SubmissionLifecycle, AttemptRecord, ALLOWED_TRANSITIONS
from .queue import DeliveryQueue, DeliveryJob, JobState, job_key_for
from .requeue import RequeueService, RequeueResult, BackfillReport
from .retry import RetryPolicy, classify_http_status
from .worker import DeliveryWorkerPool

__all__ = [
    "DeliveryDispatcher",
    "DispatchResult",
    "SubmissionLifecycle",
    "AttemptRecord",
    "ALLOWED_TRANSITIONS",
    "DeliveryQueue",
    "DeliveryJob",
    "JobState",
    "job_key_for",
    "RequeueService",
    "RequeueResult",
    "BackfillReport",
    "RetryPolicy",
    "classify_http_status",
    "DeliveryWorkerPool",
]
