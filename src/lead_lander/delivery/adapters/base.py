"""CRM adapter contract and the delivery envelope."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Dict, Any

from ...catalog import CRMConnection
from ...storage.models import Submission

TRIGGER_SUBMISSION_CREATED = "submission_created"


def build_envelope(submission: Submission) -> Dict[str, Any]:
    """The fixed JSON body every connector delivers."""
    return {
        "submissionId": submission.id,
        "idempotencyKey": submission.idempotency_key,
        "clientId": submission.client_id,
        "accountId": submission.account_id,
        "locationId": submission.location_id,
        "programId": submission.program_id,
        "contact": submission.contact.to_dict(),
        "answers": submission.answers,
        "metadata": submission.metadata,
        "consent": submission.consent.to_dict(),
    }


@dataclass
class DeliveryResult:
    """A successful delivery."""

    crm_lead_id: Optional[str] = None
    http_status: Optional[int] = None
    response_body: Optional[str] = None


class CRMAdapter(ABC):
    """Base class for CRM connectors.

    ``deliver`` either returns a ``DeliveryResult`` or raises a
    ``RetryableDeliveryError``/``PermanentDeliveryError``. Adapters are
    stateless; all per-connection settings come from ``connection.config``.
    """

    name = "base"

    def handles_event(self, connection: CRMConnection, event: str) -> bool:
        """Whether this connection subscribes to a trigger event."""
        events = connection.config.get("events") or [TRIGGER_SUBMISSION_CREATED]
        return event in events

    @abstractmethod
    def deliver(self, submission: Submission, connection: CRMConnection) -> DeliveryResult:
        """Deliver one submission to the CRM."""
