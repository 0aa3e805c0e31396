"""Data models for submission storage."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Dict, Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubmissionStatus(Enum):
    """Lifecycle status of a submission."""

    RECEIVED = "received"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (SubmissionStatus.DELIVERED, SubmissionStatus.FAILED)


class AttemptOutcome(Enum):
    """Result of a single delivery attempt."""

    SUCCESS = "success"
    RETRYABLE_FAILURE = "retryable_failure"
    PERMANENT_FAILURE = "permanent_failure"


class AuditEvent(Enum):
    """Events recorded in the audit log."""

    SUBMISSION_CREATED = "submission_created"
    DELIVERY_ATTEMPTED = "delivery_attempted"
    DELIVERY_SUCCEEDED = "delivery_succeeded"
    DELIVERY_FAILED = "delivery_failed"
    DELIVERY_SKIPPED = "delivery_skipped"
    REQUEUED = "requeued"


@dataclass
class Contact:
    first_name: str
    last_name: str
    email: str
    phone: str

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "firstName": self.first_name,
            "lastName": self.last_name,
            "email": self.email,
            "phone": self.phone,
        }


@dataclass
class Consent:
    consented: bool
    text_version: str = ""
    timestamp: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "consented": self.consented,
            "textVersion": self.text_version,
            "timestamp": self.timestamp.isoformat() if self.timestamp else None,
        }


@dataclass
class Submission:
    """One captured lead."""

    id: str
    client_id: str
    account_id: str
    program_id: str
    contact: Contact
    consent: Consent
    idempotency_key: str
    location_id: Optional[str] = None
    answers: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)
    status: SubmissionStatus = SubmissionStatus.RECEIVED
    crm_lead_id: Optional[str] = None
    last_step_completed: Optional[int] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    delivered_at: Optional[datetime] = None
    # Set when the CRM connection does not subscribe to the submission event.
    delivery_skipped_at: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "accountId": self.account_id,
            "locationId": self.location_id,
            "programId": self.program_id,
            "contact": self.contact.to_dict(),
            "answers": self.answers,
            "metadata": self.metadata,
            "status": self.status.value,
            "idempotencyKey": self.idempotency_key,
            "crmLeadId": self.crm_lead_id,
            "lastStepCompleted": self.last_step_completed,
            "consent": self.consent.to_dict(),
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
            "deliveredAt": self.delivered_at.isoformat() if self.delivered_at else None,
            "deliverySkippedAt": self.delivery_skipped_at.isoformat() if self.delivery_skipped_at else None,
        }


@dataclass
class DeliveryAttempt:
    """Record of one dispatch try. Append-only."""

    id: str
    submission_id: str
    attempt_number: int
    outcome: AttemptOutcome
    http_status: Optional[int] = None
    error_detail: Optional[str] = None
    response_body: Optional[str] = None
    started_at: datetime = field(default_factory=utcnow)
    finished_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "submissionId": self.submission_id,
            "attemptNumber": self.attempt_number,
            "outcome": self.outcome.value,
            "httpStatus": self.http_status,
            "errorDetail": self.error_detail,
            "startedAt": self.started_at.isoformat(),
            "finishedAt": self.finished_at.isoformat(),
        }


@dataclass
class AuditLogEntry:
    """Immutable audit trail entry, scoped to a client."""

    id: str
    client_id: str
    event: AuditEvent
    submission_id: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "clientId": self.client_id,
            "submissionId": self.submission_id,
            "event": self.event.value,
            "payload": self.payload,
            "createdAt": self.created_at.isoformat(),
        }
