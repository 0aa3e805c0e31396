"""Main CLI entry point for the lead-lander command."""

import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from .. import __version__
from ..authz import Caller, Role
from ..catalog import CatalogStore
from ..config import settings
from ..delivery import RetryPolicy
from ..delivery.adapters import build_default_adapters
from ..errors import LeadLanderError
from ..integrations import LeadNotifier, SMTPConfig
from ..pipeline import Pipeline
from ..storage import Database, SubmissionStatus

console = Console()

STATUS_COLORS = {
    "received": "cyan",
    "delivering": "yellow",
    "delivered": "green",
    "failed": "red",
}


def get_pipeline(db_path: Optional[str] = None, catalog_path: Optional[str] = None) -> Pipeline:
    """Build the pipeline from settings, with optional path overrides."""
    catalog = CatalogStore.from_file(Path(catalog_path or settings.catalog_path))
    return Pipeline.build(
        db=Database(Path(db_path or settings.db_path)),
        catalog=catalog,
        policy=RetryPolicy.from_settings(),
        adapters=build_default_adapters(settings.http_timeout),
        lease_seconds=settings.job_lease_seconds,
        honeypot_field=settings.honeypot_field,
        notifier=LeadNotifier(catalog, SMTPConfig.from_settings()),
    )


def _status(value: str) -> str:
    color = STATUS_COLORS.get(value, "")
    return f"[{color}]{value}[/{color}]" if color else value


@click.group()
@click.version_option(version=__version__, prog_name="lead-lander")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline activity")
def cli(verbose: bool):
    """Lead Lander - lead capture, quiz routing and CRM delivery.

    \b
    Quick Start:
      lead-lander init                       # Initialize database
      lead-lander worker                     # Deliver queued submissions
      lead-lander show --client client-1     # List submissions
      lead-lander backfill --dry-run         # Find stuck submissions
    """
    logging.basicConfig(level=logging.INFO if verbose else logging.WARNING)


# ============================================================================
# SETUP
# ============================================================================

@cli.command()
@click.option("--db", "db_path", help="Custom database path")
@click.option("--catalog", "catalog_path", help="Custom catalog path")
def init(db_path: Optional[str], catalog_path: Optional[str]):
    """Initialize the database and check the catalog."""
    pipeline = get_pipeline(db_path, catalog_path)
    catalog = pipeline.catalog

    console.print(Panel.fit(
        f"[green]✓ Database initialized![/green]\n\n"
        f"Location: [cyan]{pipeline.db.db_path}[/cyan]\n"
        f"Catalog: [cyan]{catalog_path or settings.catalog_path}[/cyan] "
        f"({len(catalog.accounts)} accounts, {len(catalog.programs)} programs, "
        f"{len(catalog.connections)} CRM connections)\n\n"
        f"[bold]Next:[/bold]\n"
        f"1. [yellow]python -m lead_lander.website_api[/yellow]   - Start the API\n"
        f"2. [yellow]lead-lander worker[/yellow]                  - Start delivery workers\n\n"
        f"[dim]Run 'lead-lander --help' for all commands[/dim]",
        title=f"Lead Lander v{__version__}"
    ))


# ============================================================================
# DELIVERY
# ============================================================================

@cli.command()
@click.option("--concurrency", "-c", type=int, help="Number of worker threads")
@click.option("--poll", "poll_seconds", type=float, help="Seconds between polls of an empty queue")
@click.option("--db", "db_path", help="Custom database path")
@click.option("--catalog", "catalog_path", help="Custom catalog path")
def worker(concurrency: Optional[int], poll_seconds: Optional[float], db_path: Optional[str], catalog_path: Optional[str]):
    """Run the delivery worker pool until interrupted."""
    logging.getLogger().setLevel(logging.INFO)
    pipeline = get_pipeline(db_path, catalog_path)
    pool = pipeline.worker_pool(concurrency, poll_seconds)
    pool.start()
    console.print(f"[green]Delivery workers running ({pool.concurrency}). Ctrl+C to stop.[/green]")
    try:
        while pool.running:
            time.sleep(1)
    except KeyboardInterrupt:
        console.print("[yellow]Stopping workers...[/yellow]")
    finally:
        pool.stop()


@cli.command("process-once")
@click.option("--max-jobs", type=int, help="Stop after this many jobs")
@click.option("--db", "db_path", help="Custom database path")
@click.option("--catalog", "catalog_path", help="Custom catalog path")
def process_once(max_jobs: Optional[int], db_path: Optional[str], catalog_path: Optional[str]):
    """Process every ready job once, then exit."""
    pipeline = get_pipeline(db_path, catalog_path)
    results = pipeline.dispatcher.run_until_idle(max_jobs=max_jobs)

    if not results:
        console.print("[dim]No jobs ready[/dim]")
        return

    table = Table(title=f"Processed {len(results)} job(s)")
    table.add_column("Submission", style="dim")
    table.add_column("Action")
    table.add_column("Status")
    table.add_column("Attempt", justify="right")
    table.add_column("Error", max_width=50)
    for result in results:
        table.add_row(
            result.submission_id,
            result.action,
            _status(result.status.value) if result.status else "",
            str(result.attempt_number or ""),
            escape((result.error or "")[:50]),
        )
    console.print(table)


@cli.command()
@click.option("--older-than-min", default=15, show_default=True, help="Only submissions older than this many minutes")
@click.option("--limit", "-n", default=200, show_default=True, help="Maximum submissions to re-enqueue")
@click.option("--dry-run", is_flag=True, help="List candidates without enqueueing")
@click.option("--db", "db_path", help="Custom database path")
def backfill(older_than_min: int, limit: int, dry_run: bool, db_path: Optional[str]):
    """Re-enqueue received/delivering submissions that never reached the CRM."""
    pipeline = get_pipeline(db_path)
    report = pipeline.requeue.backfill(timedelta(minutes=older_than_min), limit=limit, dry_run=dry_run)

    output = (
        f"Cutoff: [cyan]{report.cutoff.isoformat()}[/cyan]\n"
        f"Candidates: {len(report.candidates)}\n"
    )
    if dry_run:
        output += "[yellow]Dry run - nothing enqueued[/yellow]"
        for submission_id in report.candidates:
            output += f"\n  • {submission_id}"
    else:
        output += (
            f"[green]Enqueued: {len(report.enqueued)}[/green]\n"
            f"[dim]Already pending: {len(report.skipped)}[/dim]"
        )
    console.print(Panel.fit(output, title="Backfill"))


@cli.command()
@click.argument("submission_id")
@click.option("--db", "db_path", help="Custom database path")
def requeue(submission_id: str, db_path: Optional[str]):
    """Send a failed submission back to the delivery queue."""
    pipeline = get_pipeline(db_path)
    operator = Caller(user_id="cli", role=Role.SUPER_ADMIN)
    try:
        result = pipeline.requeue.requeue(submission_id, operator)
    except LeadLanderError as e:
        console.print(f"[red]Error:[/red] {escape(str(e))}")
        raise SystemExit(1)

    if result.enqueued:
        console.print(f"[green]✓ Requeued {submission_id}[/green] (status: {_status(result.status.value)})")
    else:
        console.print(f"[yellow]Delivery already pending for {submission_id}[/yellow]")


@cli.command()
@click.option("--db", "db_path", help="Custom database path")
def queue(db_path: Optional[str]):
    """Show delivery queue depth."""
    pipeline = get_pipeline(db_path)
    depth = pipeline.queue.depth()

    table = Table(title="Delivery queue")
    table.add_column("State")
    table.add_column("Jobs", justify="right", style="bold")
    for state, count in depth.items():
        table.add_row(state, str(count))
    console.print(table)


# ============================================================================
# INSPECTION
# ============================================================================

@cli.command()
@click.option("--client", "client_id", required=True, help="Client (tenant) id")
@click.option("--db", "db_path", help="Custom database path")
def stats(client_id: str, db_path: Optional[str]):
    """Show submission counts by status."""
    pipeline = get_pipeline(db_path)
    counts = pipeline.store.count_by_status(client_id)

    status_lines = "\n".join(f"  {_status(status)}: {count}" for status, count in counts.items())
    console.print(Panel.fit(
        f"[bold]Total Submissions:[/bold] {sum(counts.values())}\n\n"
        f"[bold]By Status:[/bold]\n{status_lines}",
        title=f"Submissions - {client_id}"
    ))


@cli.command()
@click.option("--client", "client_id", required=True, help="Client (tenant) id")
@click.option("--status", type=click.Choice([s.value for s in SubmissionStatus]), help="Filter by status")
@click.option("--program", "program_id", help="Filter by program")
@click.option("--location", "location_id", help="Filter by location")
@click.option("--limit", "-n", default=20, help="Number of submissions to show")
@click.option("--db", "db_path", help="Custom database path")
def show(
    client_id: str,
    status: Optional[str],
    program_id: Optional[str],
    location_id: Optional[str],
    limit: int,
    db_path: Optional[str],
):
    """List a client's submissions, newest first."""
    pipeline = get_pipeline(db_path)
    submissions, total = pipeline.store.list_submissions(
        client_id,
        status=SubmissionStatus(status) if status else None,
        program_id=program_id,
        location_id=location_id,
        limit=limit,
    )

    if not submissions:
        console.print("[yellow]No submissions found matching criteria.[/yellow]")
        return

    table = Table(title=f"Submissions ({len(submissions)} of {total})")
    table.add_column("ID", style="dim")
    table.add_column("Created")
    table.add_column("Name", style="cyan", max_width=25)
    table.add_column("Email", max_width=30)
    table.add_column("Program")
    table.add_column("Status", justify="center")
    table.add_column("CRM Lead")

    for s in submissions:
        table.add_row(
            s.id,
            s.created_at.strftime("%Y-%m-%d %H:%M"),
            s.contact.full_name[:25],
            s.contact.email[:30],
            s.program_id,
            _status(s.status.value),
            s.crm_lead_id or "",
        )

    console.print(table)


@cli.command()
@click.argument("submission_id")
@click.option("--db", "db_path", help="Custom database path")
def attempts(submission_id: str, db_path: Optional[str]):
    """Show the delivery attempt history of a submission."""
    pipeline = get_pipeline(db_path)
    submission = pipeline.store.get(submission_id)
    if submission is None:
        console.print(f"[red]Submission {submission_id} not found[/red]")
        return

    history = pipeline.store.list_attempts(submission_id)
    table = Table(title=f"{submission_id} - {submission.status.value}")
    table.add_column("#", justify="right")
    table.add_column("Outcome")
    table.add_column("HTTP", justify="right")
    table.add_column("Finished")
    table.add_column("Error", max_width=60)
    for attempt in history:
        table.add_row(
            str(attempt.attempt_number),
            attempt.outcome.value,
            str(attempt.http_status or ""),
            attempt.finished_at.strftime("%Y-%m-%d %H:%M:%S"),
            escape((attempt.error_detail or "")[:60]),
        )
    console.print(table)


@cli.command()
@click.option("--client", "client_id", required=True, help="Client (tenant) id")
@click.option("--submission", "submission_id", help="Only entries for this submission")
@click.option("--limit", "-n", default=50, help="Number of entries to show")
@click.option("--db", "db_path", help="Custom database path")
def audit(client_id: str, submission_id: Optional[str], limit: int, db_path: Optional[str]):
    """Show the audit trail, newest first."""
    pipeline = get_pipeline(db_path)
    entries = pipeline.audit.query(client_id, submission_id=submission_id, limit=limit)

    if not entries:
        console.print("[dim]No audit entries[/dim]")
        return

    table = Table(title=f"Audit log - {client_id}")
    table.add_column("When")
    table.add_column("Event", style="bold")
    table.add_column("Submission", style="dim")
    table.add_column("Details", max_width=60)
    for entry in entries:
        details = ", ".join(f"{k}={v}" for k, v in entry.payload.items() if v is not None)
        table.add_row(
            entry.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            entry.event.value,
            entry.submission_id or "",
            escape(details[:60]),
        )
    console.print(table)


if __name__ == "__main__":
    cli()
