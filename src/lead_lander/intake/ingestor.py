"""Submission ingestion: validate, deduplicate, persist, enqueue."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Dict, Any

from ..audit import AuditLog
from ..catalog import CatalogStore
from ..config import settings
from ..delivery.queue import DeliveryQueue
from ..errors import ValidationError, UnknownEntity, ConsentRequired
from ..quiz import QuizSessionStore, QuizStatus
from ..storage.database import Database, SubmissionStore
from ..storage.models import (
    Submission,
    SubmissionStatus,
    AuditEvent,
    Contact,
    Consent,
    utcnow,
)
from .client_info import merge_metadata
from .idempotency import compute_idempotency_key
from .validation import validate_email, validate_phone, validate_name, sanitize_answers

logger = logging.getLogger(__name__)

IDEMPOTENCY_KEY_MAX_LENGTH = 255


def _pick(data: Dict[str, Any], *keys: str):
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


@dataclass
class SubmitResult:
    submission_id: str
    status: SubmissionStatus
    idempotency_key: Optional[str] = None
    created: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "submissionId": self.submission_id,
            "status": self.status.value,
            "idempotencyKey": self.idempotency_key,
        }


class SubmissionIngestor:
    """Turns a raw form or quiz payload into a durable, queued Submission.

    Payload keys are camelCase as sent by the landing pages. ``schoolId`` and
    ``campusId`` are accepted in place of ``accountId`` and ``locationId``.
    Contact fields may be flat (``firstName``...) or nested under ``contact``.
    """

    def __init__(
        self,
        db: Database,
        store: SubmissionStore,
        audit: AuditLog,
        queue: DeliveryQueue,
        catalog: CatalogStore,
        sessions: Optional[QuizSessionStore] = None,
        honeypot_field: Optional[str] = None,
    ):
        self.db = db
        self.store = store
        self.audit = audit
        self.queue = queue
        self.catalog = catalog
        self.sessions = sessions
        self.honeypot_field = honeypot_field or settings.honeypot_field

    def submit(self, payload: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> SubmitResult:
        """Validate and store a submission, then queue it for delivery.

        ``context`` carries what the HTTP layer saw (user agent, referrer,
        client ip). It is merged into metadata; values in the payload win.
        """
        if not isinstance(payload, dict):
            raise ValidationError("Payload must be an object")

        honeypot = payload.get("honeypot") or payload.get(self.honeypot_field)
        if honeypot:
            # Bots get an ordinary-looking answer and nothing is stored.
            fake_id = str(uuid.uuid4())
            logger.warning(f"[{fake_id}] Honeypot field filled, submission discarded")
            return SubmitResult(submission_id=fake_id, status=SubmissionStatus.RECEIVED)

        contact = self._parse_contact(payload)
        answers = sanitize_answers(payload.get("answers"))
        metadata = payload.get("metadata") or {}
        if not isinstance(metadata, dict):
            raise ValidationError("metadata must be an object")
        metadata = merge_metadata(metadata, context)

        account_id = _pick(payload, "accountId", "account_id", "schoolId")
        location_id = _pick(payload, "locationId", "location_id", "campusId")
        program_id = _pick(payload, "programId", "program_id")
        if not account_id:
            raise ValidationError("accountId is required")

        session_id = _pick(payload, "quizSessionId", "quiz_session_id")
        if session_id:
            session = self._load_completed_session(session_id, account_id)
            program_id = program_id or session.program_id
            answers = {**session.answers, **answers}
            metadata["quiz"] = dict(session.result.to_dict(), sessionId=session.id)

        if not program_id:
            raise ValidationError("programId is required")

        account = self.catalog.resolve_account(account_id)
        if account is None:
            raise UnknownEntity(f"Unknown account: {account_id}")
        if self.catalog.resolve_program(account_id, program_id) is None:
            raise UnknownEntity(f"Unknown program {program_id} for account {account_id}")
        if location_id and self.catalog.resolve_location(account_id, location_id) is None:
            raise UnknownEntity(f"Unknown location {location_id} for account {account_id}")

        consent = self._parse_consent(payload.get("consent"))

        client_id = account.client_id
        idempotency_key = payload.get("idempotencyKey")
        if idempotency_key is not None:
            if not isinstance(idempotency_key, str) or not idempotency_key.strip():
                raise ValidationError("idempotencyKey must be a non-empty string")
            idempotency_key = idempotency_key.strip()
            if len(idempotency_key) > IDEMPOTENCY_KEY_MAX_LENGTH:
                raise ValidationError(f"idempotencyKey must be at most {IDEMPOTENCY_KEY_MAX_LENGTH} characters")
        else:
            idempotency_key = compute_idempotency_key(
                client_id, contact.email, contact.phone, account_id, location_id, program_id
            )

        existing = self.store.find_by_idempotency_key(client_id, idempotency_key)
        if existing:
            logger.info(f"[{existing.id}] Duplicate submission accepted")
            return SubmitResult(existing.id, existing.status, idempotency_key, created=False)

        last_step = payload.get("lastStepCompleted")
        now = utcnow()
        submission = Submission(
            id=str(uuid.uuid4()),
            client_id=client_id,
            account_id=account_id,
            location_id=location_id,
            program_id=program_id,
            contact=contact,
            consent=consent,
            idempotency_key=idempotency_key,
            answers=answers,
            metadata=metadata,
            status=SubmissionStatus.RECEIVED,
            last_step_completed=int(last_step) if isinstance(last_step, int) else None,
            created_at=now,
            updated_at=now,
        )

        with self.db.transaction() as conn:
            if not self.store.insert(conn, submission):
                # Lost a race against an identical submission.
                winner = self.store.find_by_idempotency_key(client_id, idempotency_key, conn=conn)
                logger.info(f"[{winner.id}] Duplicate submission accepted")
                return SubmitResult(winner.id, winner.status, idempotency_key, created=False)

            self.audit.record(
                conn,
                client_id,
                AuditEvent.SUBMISSION_CREATED,
                submission.id,
                {
                    "accountId": account_id,
                    "locationId": location_id,
                    "programId": program_id,
                    "idempotencyKey": idempotency_key,
                    "quizSessionId": session_id,
                },
            )
            self.queue.enqueue(submission.id, client_id, conn=conn)
            if session_id and self.sessions is not None:
                self.sessions.delete(session_id, conn=conn)

        logger.info(f"[{submission.id}] Submission received for program {program_id}")
        return SubmitResult(submission.id, submission.status, idempotency_key, created=True)

    # === PARSING ===

    @staticmethod
    def _parse_contact(payload: Dict[str, Any]) -> Contact:
        source = payload.get("contact") if isinstance(payload.get("contact"), dict) else payload
        return Contact(
            first_name=validate_name(_pick(source, "firstName", "first_name"), "firstName"),
            last_name=validate_name(_pick(source, "lastName", "last_name"), "lastName"),
            email=validate_email(source.get("email")),
            phone=validate_phone(source.get("phone")),
        )

    @staticmethod
    def _parse_consent(raw: Any) -> Consent:
        if not isinstance(raw, dict) or raw.get("consented") is not True:
            raise ConsentRequired("Affirmative consent is required")

        timestamp = raw.get("timestamp")
        if timestamp:
            try:
                parsed = datetime.fromisoformat(str(timestamp).replace("Z", "+00:00"))
            except ValueError:
                raise ValidationError("consent.timestamp must be an ISO 8601 datetime")
            if parsed.tzinfo is None:
                parsed = parsed.replace(tzinfo=timezone.utc)
        else:
            parsed = utcnow()

        return Consent(
            consented=True,
            text_version=str(raw.get("textVersion") or raw.get("text_version") or ""),
            timestamp=parsed,
        )

    def _load_completed_session(self, session_id: str, account_id: str):
        if self.sessions is None:
            raise ValidationError("Quiz sessions are not available")
        session = self.sessions.get(session_id)
        if session is None or session.account_id != account_id:
            raise ValidationError(f"Unknown quiz session: {session_id}")
        if session.status == QuizStatus.IN_PROGRESS:
            raise ValidationError("Quiz session is not complete")
        if session.result.is_disqualified:
            raise ValidationError("Quiz session ended without a program recommendation")
        return session
