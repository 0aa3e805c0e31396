"""Error taxonomy for the lead pipeline."""

from typing import Optional


class LeadLanderError(Exception):
    """Base class for all pipeline errors."""

    code = "error"


class ValidationError(LeadLanderError):
    """Bad input to the ingestor. Not retried."""

    code = "validation_error"


class UnknownEntity(LeadLanderError):
    """Account/location/program did not resolve in the catalog."""

    code = "unknown_entity"


class ConsentRequired(LeadLanderError):
    """Submission arrived without affirmative consent."""

    code = "consent_required"


class InvalidAnswer(LeadLanderError):
    """Quiz engine misuse: ineligible question, repeat answer or foreign option."""

    code = "invalid_answer"


class SubmissionNotFound(LeadLanderError):
    code = "not_found"


class NotAuthorized(LeadLanderError):
    code = "not_authorized"


class DeliveryError(LeadLanderError):
    """Raised by CRM adapters when a delivery does not succeed."""

    code = "delivery_error"

    def __init__(
        self,
        message: str,
        http_status: Optional[int] = None,
        response_body: Optional[str] = None,
    ):
        super().__init__(message)
        self.http_status = http_status
        self.response_body = response_body


class RetryableDeliveryError(DeliveryError):
    """Network error, timeout, 5xx or 429."""

    code = "retryable_delivery_error"


class PermanentDeliveryError(DeliveryError):
    """4xx other than 429, or a connector that cannot deliver at all."""

    code = "permanent_delivery_error"


class AuditWriteFailure(LeadLanderError):
    """An audit append failed; the paired submission mutation must roll back."""

    code = "audit_write_failure"


class InvalidTransition(LeadLanderError):
    """A status change the submission state machine does not allow."""

    code = "invalid_transition"
