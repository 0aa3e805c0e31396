"""Tests for the lead-lander CLI."""

import json

import pytest
import requests
from click.testing import CliRunner
from rich.console import Console

from conftest import CATALOG, make_payload
from lead_lander.catalog import CatalogStore
from lead_lander.cli import main as cli_main
from lead_lander.cli.main import cli
from lead_lander.pipeline import Pipeline
from lead_lander.storage import Database, SubmissionStatus


class FakeResponse:
    def __init__(self, status_code):
        self.status_code = status_code
        self.text = "{}"

    def json(self):
        return {}


@pytest.fixture
def paths(temp_data_dir):
    db_path = temp_data_dir / "cli.db"
    catalog_path = temp_data_dir / "catalog.json"
    catalog_path.write_text(json.dumps(CATALOG))
    return str(db_path), str(catalog_path)


@pytest.fixture
def seeded(paths):
    """One received submission in the CLI database."""
    db_path, _ = paths
    pipeline = Pipeline.build(db=Database(db_path), catalog=CatalogStore.from_dict(CATALOG))
    result = pipeline.ingestor.submit(make_payload())
    return pipeline, result.submission_id


@pytest.fixture
def runner(monkeypatch):
    # Wide console so table cells are not wrapped.
    monkeypatch.setattr(cli_main, "console", Console(width=200))
    return CliRunner()


class TestSetup:
    def test_init(self, runner, paths):
        """init creates the database and reports the catalog."""
        db_path, catalog_path = paths
        result = runner.invoke(cli, ["init", "--db", db_path, "--catalog", catalog_path])
        assert result.exit_code == 0
        assert "Database initialized" in result.output
        assert "4 accounts" in result.output


class TestDelivery:
    def test_process_once_delivers(self, runner, paths, seeded, monkeypatch):
        """process-once delivers the queued submission."""
        db_path, catalog_path = paths
        pipeline, submission_id = seeded
        monkeypatch.setattr(requests, "post", lambda *args, **kwargs: FakeResponse(201))

        result = runner.invoke(cli, ["process-once", "--db", db_path, "--catalog", catalog_path])

        assert result.exit_code == 0
        assert "Processed 1 job" in result.output
        assert pipeline.store.get(submission_id).status == SubmissionStatus.DELIVERED

    def test_process_once_empty(self, runner, paths):
        """process-once on an empty queue does nothing."""
        db_path, catalog_path = paths
        result = runner.invoke(cli, ["process-once", "--db", db_path, "--catalog", catalog_path])
        assert result.exit_code == 0
        assert "No jobs ready" in result.output

    def test_requeue_failed(self, runner, paths, seeded, monkeypatch):
        """requeue puts a failed submission back on the queue."""
        db_path, catalog_path = paths
        pipeline, submission_id = seeded
        monkeypatch.setattr(requests, "post", lambda *args, **kwargs: FakeResponse(422))
        runner.invoke(cli, ["process-once", "--db", db_path, "--catalog", catalog_path])
        assert pipeline.store.get(submission_id).status == SubmissionStatus.FAILED

        result = runner.invoke(cli, ["requeue", submission_id, "--db", db_path])

        assert result.exit_code == 0
        assert "Requeued" in result.output
        assert pipeline.store.get(submission_id).status == SubmissionStatus.RECEIVED

    def test_requeue_unknown(self, runner, paths):
        """requeue of an unknown id reports an error."""
        db_path, _ = paths
        result = runner.invoke(cli, ["requeue", "missing", "--db", db_path])
        assert result.exit_code == 1
        assert "Error" in result.output

    def test_backfill_dry_run(self, runner, paths, seeded):
        """backfill --dry-run lists candidates only."""
        db_path, _ = paths
        result = runner.invoke(cli, ["backfill", "--older-than-min", "0", "--dry-run", "--db", db_path])
        assert result.exit_code == 0
        assert "Dry run" in result.output
        assert "Candidates: 1" in result.output

    def test_queue_depth(self, runner, paths, seeded):
        """queue shows job counts by state."""
        db_path, _ = paths
        result = runner.invoke(cli, ["queue", "--db", db_path])
        assert result.exit_code == 0
        assert "queued" in result.output


class TestInspection:
    def test_show(self, runner, paths, seeded):
        """show lists a client's submissions."""
        db_path, _ = paths
        result = runner.invoke(cli, ["show", "--client", "client-1", "--db", db_path])
        assert result.exit_code == 0
        assert "Submissions (1 of 1)" in result.output
        assert "Ada Lovelace" in result.output

    def test_show_empty(self, runner, paths):
        """show with no submissions says so."""
        db_path, _ = paths
        result = runner.invoke(cli, ["show", "--client", "client-2", "--db", db_path])
        assert "No submissions found" in result.output

    def test_stats(self, runner, paths, seeded):
        """Counts per status for one client."""
        db_path, _ = paths
        result = runner.invoke(cli, ["stats", "--client", "client-1", "--db", db_path])
        assert result.exit_code == 0
        assert "Total Submissions: 1" in result.output
        assert "received: 1" in result.output
        assert "delivered: 0" in result.output

    def test_stats_other_client(self, runner, paths, seeded):
        """Another client's submissions are not counted."""
        db_path, _ = paths
        result = runner.invoke(cli, ["stats", "--client", "client-2", "--db", db_path])
        assert "Total Submissions: 0" in result.output

    def test_audit(self, runner, paths, seeded):
        """audit prints the trail."""
        db_path, _ = paths
        result = runner.invoke(cli, ["audit", "--client", "client-1", "--db", db_path])
        assert result.exit_code == 0
        assert "submission_created" in result.output

    def test_attempts_unknown(self, runner, paths):
        """attempts for an unknown submission reports not found."""
        db_path, _ = paths
        result = runner.invoke(cli, ["attempts", "missing", "--db", db_path])
        assert "not found" in result.output
