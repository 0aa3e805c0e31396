"""Tests for the post-delivery lead notification email."""

import copy
import smtplib

import pytest

from conftest import CATALOG, make_payload
from lead_lander.catalog import CatalogStore, ConnectorType
from lead_lander.config import reload_settings
from lead_lander.delivery import RetryPolicy
from lead_lander.integrations import SMTPConfig, LeadNotifier, build_lead_email
from lead_lander.pipeline import Pipeline
from lead_lander.storage import SubmissionStatus


class FakeSMTP:
    """Records what would have been sent."""

    sent = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host
        self.port = port
        self.logged_in = None

    def starttls(self):
        pass

    def login(self, username, password):
        self.logged_in = (username, password)

    def sendmail(self, from_addr, to_addrs, msg):
        if FakeSMTP.fail_with is not None:
            raise FakeSMTP.fail_with
        FakeSMTP.sent.append({"from": from_addr, "to": list(to_addrs), "msg": msg, "login": self.logged_in})

    def quit(self):
        pass


@pytest.fixture
def fake_smtp(monkeypatch):
    FakeSMTP.sent = []
    FakeSMTP.fail_with = None
    monkeypatch.setattr(smtplib, "SMTP", FakeSMTP)
    return FakeSMTP


@pytest.fixture
def smtp_config():
    return SMTPConfig(
        host="smtp.example.com",
        port=587,
        username="mailer",
        password="secret",
        from_email="leads@example.com",
    )


def build_pipeline(db, catalog, adapter, smtp):
    return Pipeline.build(
        db=db,
        catalog=catalog,
        policy=RetryPolicy(max_attempts=2, base_delay_seconds=0.0, max_delay_seconds=0.0),
        adapters={ConnectorType.WEBHOOK: adapter, ConnectorType.GENERIC: adapter},
        honeypot_field="website",
        notifier=LeadNotifier(catalog, smtp),
    )


class TestLeadNotification:
    def test_email_sent_after_delivery(self, db, catalog, adapter, fake_smtp, smtp_config):
        """A delivered lead is emailed to the location's recipients."""
        pipeline = build_pipeline(db, catalog, adapter, smtp_config)
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id
        pipeline.dispatcher.run_until_idle()

        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED
        assert len(fake_smtp.sent) == 1
        sent = fake_smtp.sent[0]
        assert sent["to"] == ["admissions@example.com"]
        assert sent["from"] == "leads@example.com"
        assert sent["login"] == ("mailer", "secret")
        assert "Subject: New lead: Nursing (Downtown)" in sent["msg"]

    def test_no_email_before_delivery_succeeds(self, db, catalog, adapter, fake_smtp, smtp_config):
        """Failed attempts send nothing."""
        adapter.script = [503, 503]
        pipeline = build_pipeline(db, catalog, adapter, smtp_config)
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id
        pipeline.dispatcher.run_until_idle()

        assert pipeline.store.get(submission_id).status == SubmissionStatus.FAILED
        assert fake_smtp.sent == []

    @pytest.mark.parametrize("error", [smtplib.SMTPException("relay denied"), OSError("connection refused")])
    def test_send_failure_leaves_submission_delivered(self, db, catalog, adapter, fake_smtp, smtp_config, error):
        """A broken mail server never changes the delivery outcome."""
        fake_smtp.fail_with = error
        pipeline = build_pipeline(db, catalog, adapter, smtp_config)
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id

        results = pipeline.dispatcher.run_until_idle()

        assert [r.action for r in results] == ["delivered"]
        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED
        assert pipeline.queue.get(submission_id) is None

    def test_notifier_exception_is_contained(self, db, catalog, adapter):
        """Even an unexpected notifier error leaves the lead delivered."""

        class BrokenNotifier(LeadNotifier):
            def notify_delivered(self, submission):
                raise RuntimeError("boom")

        pipeline = Pipeline.build(
            db=db,
            catalog=catalog,
            adapters={ConnectorType.WEBHOOK: adapter, ConnectorType.GENERIC: adapter},
            notifier=BrokenNotifier(catalog),
        )
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id

        assert pipeline.dispatcher.process_next().action == "delivered"
        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED

    def test_lead_without_location(self, db, catalog, adapter, fake_smtp, smtp_config):
        """A lead with no location has nobody to notify."""
        pipeline = build_pipeline(db, catalog, adapter, smtp_config)
        submission_id = pipeline.ingestor.submit(make_payload(locationId=None)).submission_id
        pipeline.dispatcher.run_until_idle()

        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED
        assert fake_smtp.sent == []

    def test_disabled_notifications(self, db, adapter, fake_smtp, smtp_config):
        """enabled=false keeps the recipient list but sends nothing."""
        data = copy.deepcopy(CATALOG)
        data["locations"][0]["notifications"]["enabled"] = False
        catalog = CatalogStore.from_dict(data)
        pipeline = build_pipeline(db, catalog, adapter, smtp_config)
        pipeline.ingestor.submit(make_payload())
        pipeline.dispatcher.run_until_idle()

        assert catalog.resolve_location("acct-1", "loc-1").notifications.recipients == ["admissions@example.com"]
        assert fake_smtp.sent == []

    def test_without_smtp_nothing_is_sent(self, db, catalog, adapter, fake_smtp):
        """No SMTP configuration means notifications are skipped."""
        pipeline = build_pipeline(db, catalog, adapter, None)
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id
        pipeline.dispatcher.run_until_idle()

        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED
        assert fake_smtp.sent == []


class TestBuildLeadEmail:
    def test_body_lists_contact_and_answers(self, pipeline):
        """The email body carries ids, contact details and answers."""
        submission_id = pipeline.ingestor.submit(make_payload()).submission_id
        submission = pipeline.store.get(submission_id)

        subject, body = build_lead_email(submission, "Nursing", "Downtown")

        assert subject == "New lead: Nursing (Downtown)"
        assert f"Submission ID: {submission_id}" in body
        assert "Name: Ada Lovelace" in body
        assert "Email: ada@example.com" in body
        assert '- startTerm: "fall"' in body


class TestSMTPConfig:
    def test_disabled_by_default(self, monkeypatch):
        """Email stays off unless LL_EMAIL_ENABLED is true."""
        monkeypatch.delenv("LL_EMAIL_ENABLED", raising=False)
        reload_settings()
        assert SMTPConfig.from_settings() is None

    def test_enabled_but_incomplete(self, monkeypatch):
        """Missing credentials disable email instead of failing later."""
        monkeypatch.setenv("LL_EMAIL_ENABLED", "true")
        monkeypatch.setenv("LL_SMTP_HOST", "smtp.example.com")
        monkeypatch.delenv("LL_SMTP_USER", raising=False)
        monkeypatch.delenv("LL_SMTP_PASSWORD", raising=False)
        reload_settings()
        assert SMTPConfig.from_settings() is None

    def test_from_environment(self, monkeypatch):
        """A complete environment produces a config."""
        monkeypatch.setenv("LL_EMAIL_ENABLED", "true")
        monkeypatch.setenv("LL_SMTP_HOST", "smtp.example.com")
        monkeypatch.setenv("LL_SMTP_PORT", "2525")
        monkeypatch.setenv("LL_SMTP_USER", "mailer")
        monkeypatch.setenv("LL_SMTP_PASSWORD", "secret")
        monkeypatch.setenv("LL_SMTP_FROM", "leads@example.com")
        reload_settings()

        config = SMTPConfig.from_settings()

        assert config.host == "smtp.example.com"
        assert config.port == 2525
        assert config.username == "mailer"
        assert config.from_email == "leads@example.com"
        assert config.use_tls is True


@pytest.fixture(autouse=True)
def restore_settings():
    yield
    reload_settings()
