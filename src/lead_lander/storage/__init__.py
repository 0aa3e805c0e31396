"""Storage layer for submissions, delivery attempts and audit entries."""

from .database import Database, SubmissionStore
from .models import (
    Submission,
    SubmissionStatus,
    DeliveryAttempt,
    AttemptOutcome,
    AuditLogEntry,
    AuditEvent,
    Contact,
    Consent,
)

__all__ = [
    "Database",
    "SubmissionStore",
    "Submission",
    "SubmissionStatus",
    "DeliveryAttempt",
    "AttemptOutcome",
    "AuditLogEntry",
    "AuditEvent",
    "Contact",
    "Consent",
]
