"""Tests for submission intake."""

import threading

import pytest

from conftest import make_payload
from lead_lander.errors import ValidationError, UnknownEntity, ConsentRequired
from lead_lander.intake import compute_idempotency_key, IDEMPOTENCY_KEY_MAX_LENGTH
from lead_lander.intake.client_info import request_metadata
from lead_lander.storage import SubmissionStatus, AuditEvent
from lead_lander.delivery import job_key_for


class TestSubmit:
    """Happy path and deduplication."""

    def test_creates_submission_audit_entry_and_job(self, pipeline):
        """A submission, its audit entry and its job are created together."""
        result = pipeline.ingestor.submit(make_payload(idempotencyKey="key-1"))

        assert result.created
        assert result.status == SubmissionStatus.RECEIVED
        assert result.idempotency_key == "key-1"

        submission = pipeline.store.get(result.submission_id)
        assert submission.client_id == "client-1"
        assert submission.account_id == "acct-1"
        assert submission.location_id == "loc-1"
        assert submission.program_id == "prog-1"
        assert submission.contact.email == "ada@example.com"
        assert submission.consent.text_version == "v3"
        assert submission.crm_lead_id is None

        entries = pipeline.audit.query("client-1", submission_id=submission.id)
        assert [e.event for e in entries] == [AuditEvent.SUBMISSION_CREATED]

        job = pipeline.queue.get(submission.id)
        assert job.job_key == job_key_for(submission.id) == f"create-{submission.id}"
        assert job.envelope == {"submissionId": submission.id, "attemptHint": 1}

    def test_same_key_returns_existing_submission(self, pipeline):
        """Same idempotency key returns the first submission."""
        first = pipeline.ingestor.submit(make_payload(idempotencyKey="key-1"))
        second = pipeline.ingestor.submit(make_payload(idempotencyKey="key-1", firstName="Changed"))

        assert second.submission_id == first.submission_id
        assert not second.created
        _, total = pipeline.store.list_submissions("client-1")
        assert total == 1
        assert pipeline.queue.depth()["queued"] == 1

    def test_concurrent_duplicates_create_one_submission(self, pipeline):
        """Racing duplicates still create a single row."""
        results = []

        def submit():
            results.append(pipeline.ingestor.submit(make_payload(idempotencyKey="race")))

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len({r.submission_id for r in results}) == 1
        assert sum(1 for r in results if r.created) == 1
        _, total = pipeline.store.list_submissions("client-1")
        assert total == 1
        assert pipeline.queue.depth()["queued"] == 1

    def test_derived_key_deduplicates_without_client_key(self, pipeline):
        """The derived key deduplicates when none is sent."""
        first = pipeline.ingestor.submit(make_payload())
        second = pipeline.ingestor.submit(make_payload(email="ADA@example.com", phone="614.555.0142"))

        assert first.submission_id == second.submission_id
        assert first.idempotency_key == compute_idempotency_key(
            "client-1", "ada@example.com", "6145550142", "acct-1", "loc-1", "prog-1"
        )

    def test_same_key_different_client_is_separate(self, pipeline):
        """Idempotency keys are scoped per client."""
        a = pipeline.ingestor.submit(make_payload(idempotencyKey="shared"))
        b = pipeline.ingestor.submit(make_payload(
            idempotencyKey="shared", accountId="acct-3", locationId=None, programId="prog-o1",
        ))
        assert a.submission_id != b.submission_id

    def test_legacy_school_and_campus_ids(self, pipeline):
        """schoolId and campusId are accepted."""
        payload = make_payload()
        del payload["accountId"]
        del payload["locationId"]
        payload.update(schoolId="acct-1", campusId="loc-1")

        result = pipeline.ingestor.submit(payload)
        submission = pipeline.store.get(result.submission_id)
        assert submission.account_id == "acct-1"
        assert submission.location_id == "loc-1"

    def test_html_is_stripped(self, pipeline):
        """HTML is removed from contact fields and free-text answers."""
        result = pipeline.ingestor.submit(make_payload(
            firstName="<b>Ada</b>", answers={"goals": "<script>x</script>Become a nurse"},
        ))
        submission = pipeline.store.get(result.submission_id)
        assert submission.contact.first_name == "Ada"
        assert submission.answers["goals"] == "xBecome a nurse"


class TestRequestMetadata:
    """Request context merged into submission metadata."""

    IPHONE_UA = (
        "Mozilla/5.0 (iPhone; CPU iPhone OS 17_4 like Mac OS X) AppleWebKit/605.1.15 "
        "(KHTML, like Gecko) Version/17.4 Mobile/15E148 Safari/604.1"
    )
    DESKTOP_UA = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )

    def test_context_fills_metadata(self, pipeline):
        """User agent, referrer and ip from the request land in metadata."""
        context = request_metadata(user_agent=self.IPHONE_UA, referrer="https://ads.example/lp", ip="203.0.113.9")
        result = pipeline.ingestor.submit(make_payload(), context=context)

        metadata = pipeline.store.get(result.submission_id).metadata
        assert metadata["userAgent"] == self.IPHONE_UA
        assert metadata["referrer"] == "https://ads.example/lp"
        assert metadata["ip"] == "203.0.113.9"
        assert metadata["browser"] == {"name": "Safari", "version": "17.4"}
        assert metadata["device"] == {"type": "mobile", "vendor": "Apple", "model": None}
        assert metadata["utm"] == {"utm_source": "google"}

    def test_payload_values_win(self, pipeline):
        """Metadata sent by the landing page overrides request headers."""
        context = request_metadata(user_agent=self.IPHONE_UA, referrer="https://proxy.example/", ip="10.0.0.1")
        result = pipeline.ingestor.submit(
            make_payload(metadata={"referrer": "https://school.example/nursing", "userAgent": self.DESKTOP_UA}),
            context=context,
        )

        metadata = pipeline.store.get(result.submission_id).metadata
        assert metadata["referrer"] == "https://school.example/nursing"
        assert metadata["userAgent"] == self.DESKTOP_UA
        assert metadata["browser"] == {"name": "Chrome", "version": "124.0.0.0"}
        assert metadata["device"]["type"] == "desktop"
        assert metadata["ip"] == "10.0.0.1"

    def test_no_context_leaves_metadata_alone(self, pipeline):
        """Without request context only the payload metadata is stored."""
        result = pipeline.ingestor.submit(make_payload())
        assert pipeline.store.get(result.submission_id).metadata == {"utm": {"utm_source": "google"}}


class TestHoneypot:
    def test_filled_honeypot_reports_success_but_stores_nothing(self, pipeline):
        """Bots get a normal response and nothing is stored."""
        result = pipeline.ingestor.submit(make_payload(website="http://spam.example"))

        assert result.status == SubmissionStatus.RECEIVED
        assert not result.created
        assert pipeline.store.get(result.submission_id) is None
        _, total = pipeline.store.list_submissions("client-1")
        assert total == 0
        assert pipeline.queue.depth()["queued"] == 0


class TestRejections:
    """Bad input never produces a row or a job."""

    @pytest.mark.parametrize("field", ["firstName", "lastName", "email", "phone"])
    def test_missing_contact_field(self, pipeline, field):
        """Each contact field is required."""
        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(**{field: ""}))

    @pytest.mark.parametrize("email", ["not-an-email", "a@b", "x@mailinator.com"])
    def test_bad_email(self, pipeline, email):
        """Malformed and disposable emails are rejected."""
        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(email=email))

    @pytest.mark.parametrize("phone", ["123", "111-111-1111"])
    def test_bad_phone(self, pipeline, phone):
        """Phone numbers must be valid."""
        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(phone=phone))

    def test_unknown_program(self, pipeline):
        """Unknown programs are rejected."""
        with pytest.raises(UnknownEntity):
            pipeline.ingestor.submit(make_payload(programId="nope"))

    def test_program_of_other_account(self, pipeline):
        """A program from another account is rejected."""
        with pytest.raises(UnknownEntity):
            pipeline.ingestor.submit(make_payload(programId="prog-s1"))

    def test_inactive_location(self, pipeline):
        """Inactive locations are rejected."""
        with pytest.raises(UnknownEntity):
            pipeline.ingestor.submit(make_payload(locationId="loc-closed"))

    def test_unknown_account(self, pipeline):
        """Unknown accounts are rejected."""
        with pytest.raises(UnknownEntity):
            pipeline.ingestor.submit(make_payload(accountId="ghost"))

    @pytest.mark.parametrize("consent", [None, {"consented": False, "textVersion": "v3"}, {"textVersion": "v3"}])
    def test_consent_required(self, pipeline, consent):
        """Consent must be given explicitly."""
        with pytest.raises(ConsentRequired):
            pipeline.ingestor.submit(make_payload(consent=consent))

    def test_rejections_leave_no_trace(self, pipeline):
        """A rejected submission writes no row and no audit entry."""
        with pytest.raises(ConsentRequired):
            pipeline.ingestor.submit(make_payload(consent={"consented": False}))
        _, total = pipeline.store.list_submissions("client-1")
        assert total == 0
        assert pipeline.audit.query("client-1") == []

    def test_overlong_idempotency_key(self, pipeline):
        """Keys past the maximum length are rejected, not truncated."""
        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(idempotencyKey="k" * (IDEMPOTENCY_KEY_MAX_LENGTH + 1)))
        _, total = pipeline.store.list_submissions("client-1")
        assert total == 0

    def test_idempotency_key_at_maximum_length(self, pipeline):
        """A key of exactly the maximum length is kept intact."""
        key = "k" * IDEMPOTENCY_KEY_MAX_LENGTH
        result = pipeline.ingestor.submit(make_payload(idempotencyKey=key))
        assert result.idempotency_key == key


class TestQuizConversion:
    """A completed quiz session becomes part of the submission."""

    def test_recommended_program_fills_program_id(self, pipeline):
        """The quiz recommendation supplies the program."""
        session = pipeline.quiz.start("acct-1")
        session = pipeline.quiz.apply_answer(session, "q1", "A")
        session = pipeline.quiz.apply_answer(session, "q2", "B")
        pipeline.sessions.save(session)

        payload = make_payload(quizSessionId=session.id)
        del payload["programId"]
        result = pipeline.ingestor.submit(payload)

        submission = pipeline.store.get(result.submission_id)
        assert submission.program_id == "progX"
        assert submission.answers["q1"] == "A"
        assert submission.metadata["quiz"]["scoreByProgram"] == {"progX": 8, "progY": 4}
        assert pipeline.sessions.get(session.id) is None

    def test_disqualified_session_rejected(self, pipeline):
        """A disqualified quiz session cannot be submitted."""
        session = pipeline.quiz.start("acct-1")
        session = pipeline.quiz.apply_answer(session, "q1", "none")
        session = pipeline.quiz.apply_answer(session, "q2", "nothing")
        pipeline.sessions.save(session)

        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(quizSessionId=session.id))

    def test_in_progress_session_rejected(self, pipeline):
        """An unfinished quiz session cannot be submitted."""
        session = pipeline.quiz.start("acct-1")
        pipeline.sessions.save(session)
        with pytest.raises(ValidationError):
            pipeline.ingestor.submit(make_payload(quizSessionId=session.id))
