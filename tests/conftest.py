"""Shared fixtures: temporary database, in-memory catalog, scripted CRM adapters."""

import tempfile
from pathlib import Path

import pytest

from lead_lander.catalog import CatalogStore, ConnectorType
from lead_lander.delivery import RetryPolicy
from lead_lander.delivery.adapters import CRMAdapter, DeliveryResult
from lead_lander.errors import RetryableDeliveryError, PermanentDeliveryError
from lead_lander.pipeline import Pipeline
from lead_lander.storage import Database


CATALOG = {
    "clients": [{"id": "client-1", "name": "Acme Education"}, {"id": "client-2", "name": "Other Co"}],
    "accounts": [
        {
            "id": "acct-1",
            "clientId": "client-1",
            "name": "Acme North",
            "crmConnectionId": "conn-1",
            "defaultProgramId": None,
        },
        {
            "id": "acct-2",
            "clientId": "client-1",
            "name": "Acme South",
            "crmConnectionId": "conn-2",
            "defaultProgramId": "prog-s1",
        },
        {"id": "acct-3", "clientId": "client-2", "name": "Other", "crmConnectionId": "conn-3"},
        {"id": "acct-nocrm", "clientId": "client-1", "name": "No CRM"},
    ],
    "locations": [
        {
            "id": "loc-1",
            "accountId": "acct-1",
            "name": "Downtown",
            "notifications": {"enabled": True, "recipients": ["admissions@example.com"]},
        },
        {"id": "loc-closed", "accountId": "acct-1", "name": "Closed", "isActive": False},
        {"id": "loc-s1", "accountId": "acct-2", "name": "Southside"},
    ],
    "programs": [
        {"id": "prog-1", "accountId": "acct-1", "name": "Nursing", "displayOrder": 1},
        {"id": "progX", "accountId": "acct-1", "name": "Program X", "displayOrder": 2},
        {"id": "progY", "accountId": "acct-1", "name": "Program Y", "displayOrder": 3},
        {"id": "prog-s1", "accountId": "acct-2", "name": "South One", "displayOrder": 1},
        {"id": "prog-o1", "accountId": "acct-3", "name": "Other One", "displayOrder": 1},
        {"id": "prog-n1", "accountId": "acct-nocrm", "name": "No CRM One", "displayOrder": 1},
    ],
    "crmConnections": [
        {"id": "conn-1", "clientId": "client-1", "type": "webhook", "config": {"url": "https://crm.example.com/leads"}},
        {
            "id": "conn-2",
            "clientId": "client-1",
            "type": "webhook",
            "config": {"url": "https://crm.example.com/south", "events": ["quiz_completed"]},
        },
        {"id": "conn-3", "clientId": "client-2", "type": "generic", "config": {"handler": "other-crm"}},
    ],
    "quizQuestions": [
        {
            "id": "q1",
            "accountId": "acct-1",
            "text": "What interests you?",
            "displayOrder": 1,
            "options": [
                {"id": "A", "label": "Caring for people", "pointAssignments": {"progX": 5}},
                {"id": "B", "label": "Both", "pointAssignments": {"progX": 3, "progY": 4}},
                {"id": "none", "label": "Not sure", "pointAssignments": {}},
            ],
        },
        {
            "id": "q2",
            "accountId": "acct-1",
            "text": "Pick another",
            "displayOrder": 2,
            "options": [
                {"id": "B", "label": "Both", "pointAssignments": {"progX": 3, "progY": 4}},
                {"id": "nothing", "label": "Nothing", "pointAssignments": {}},
            ],
        },
    ],
}


class ScriptedAdapter(CRMAdapter):
    """Plays back a list of outcomes: an int status code or a DeliveryResult."""

    name = "scripted"

    def __init__(self, script=None):
        self.script = list(script or [])
        self.calls = []

    def deliver(self, submission, connection):
        self.calls.append(submission.id)
        step = self.script.pop(0) if self.script else 200
        if isinstance(step, DeliveryResult):
            return step
        if isinstance(step, Exception):
            raise step
        if step == 429 or step >= 500:
            raise RetryableDeliveryError(f"HTTP {step}", http_status=step, response_body="unavailable")
        if step >= 400:
            raise PermanentDeliveryError(f"HTTP {step}", http_status=step, response_body="rejected")
        return DeliveryResult(crm_lead_id=None, http_status=step, response_body="{}")


@pytest.fixture
def temp_data_dir():
    """Create temporary data directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def db(temp_data_dir):
    return Database(temp_data_dir / "leads.db")


@pytest.fixture
def catalog():
    return CatalogStore.from_dict(CATALOG)


@pytest.fixture
def adapter():
    return ScriptedAdapter()


@pytest.fixture
def pipeline(db, catalog, adapter):
    """Pipeline with zero backoff so retries are immediately claimable."""
    return Pipeline.build(
        db=db,
        catalog=catalog,
        policy=RetryPolicy(max_attempts=5, base_delay_seconds=0.0, max_delay_seconds=0.0),
        adapters={ConnectorType.WEBHOOK: adapter, ConnectorType.GENERIC: adapter},
        honeypot_field="website",
    )


def make_payload(**overrides):
    payload = {
        "firstName": "Ada",
        "lastName": "Lovelace",
        "email": "ada@example.com",
        "phone": "(614) 555-0142",
        "accountId": "acct-1",
        "locationId": "loc-1",
        "programId": "prog-1",
        "answers": {"startTerm": "fall"},
        "metadata": {"utm": {"utm_source": "google"}},
        "consent": {"consented": True, "textVersion": "v3", "timestamp": "2026-01-15T10:00:00Z"},
    }
    payload.update(overrides)
    return payload
