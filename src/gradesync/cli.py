"""CLI for gradesync."""

import logging
import uuid
from collections import Counter
from pathlib import Path

import click
from dotenv import load_dotenv

from .config import PublishingSettings
from .errors import GradeSyncError, PublishingConfigurationError
from .formats import FormatRegistry
from .formatting import ExportOptions
from .loader import dump_course, load_course
from .logging import TraceLogger
from .orchestrator import GradeExportOrchestrator
from .publishing.queue import DeferredTaskQueue
from .publishing.transport import DirectoryPoster, HttpSisPoster

# Load .env file if present
load_dotenv()


def _requester(roster, user_id: int | None):
    if user_id is None:
        return None
    user = roster.users.get(user_id)
    if user is None:
        raise click.BadParameter(f"no user with id {user_id} in course file", param_hint="--user")
    return user


@click.group()
@click.version_option(package_name="gradesync")
@click.option("--verbose", "-v", is_flag=True, help="Log debug output")
def cli(verbose: bool):
    """Grade aggregation, gradebook export and SIS grade publishing."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )


@cli.command("export-csv")
@click.argument("course_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--output", "-o", type=click.Path(dir_okay=False), help="Write CSV here instead of stdout")
@click.option("--user", "user_id", type=int, help="Requester whose gradebook preferences apply")
@click.option("--include-sis-id", is_flag=True, help="Add SIS User ID / SIS Login ID columns")
@click.option("--include-integration-id", is_flag=True, help="Add Integration ID (with --include-sis-id)")
@click.option("--grading-period", "grading_period_id", type=int, help="Only this grading period")
@click.option("--sortable-names", is_flag=True, help="Show students as 'Last, First'")
def export_csv(
    course_file: str,
    output: str | None,
    user_id: int | None,
    include_sis_id: bool,
    include_integration_id: bool,
    grading_period_id: int | None,
    sortable_names: bool,
):
    """Export the gradebook of COURSE_FILE as CSV."""
    roster = load_course(course_file)
    orchestrator = GradeExportOrchestrator(roster)
    options = ExportOptions(
        include_sis_id=include_sis_id,
        include_integration_id=include_integration_id,
        list_by_sortable_name=sortable_names,
        grading_period_id=grading_period_id,
    )

    try:
        csv_text = orchestrator.export_csv(_requester(roster, user_id), options)
    except GradeSyncError as e:
        click.echo(f"✗ Export failed: {e}", err=True)
        raise SystemExit(1)

    if output:
        Path(output).write_text(csv_text)
        click.echo(f"✓ Wrote {output}")
    else:
        click.echo(csv_text, nl=False)


@cli.command("publish")
@click.argument("course_file", type=click.Path(exists=True, dir_okay=False))
@click.option("--settings", "settings_file", type=click.Path(exists=True, dir_okay=False),
              help="YAML publishing settings (default: GRADESYNC_* environment)")
@click.option("--user", "user_id", required=True, type=int, help="Publishing user id")
@click.option("--student", "student_id", type=int, help="Re-publish a single student")
@click.option("--trace", "trace_file", type=click.Path(dir_okay=False), help="Append JSONL audit events here")
@click.option("--save", "save_file", type=click.Path(dir_okay=False), help="Write the updated course file here")
@click.option("--dry-run", "dry_run_dir", type=click.Path(file_okay=False),
              help="Write batches to this directory instead of posting them")
def publish(
    course_file: str,
    settings_file: str | None,
    user_id: int,
    student_id: int | None,
    trace_file: str | None,
    save_file: str | None,
    dry_run_dir: str | None,
):
    """Publish final grades of COURSE_FILE to the SIS endpoint."""
    roster = load_course(course_file)
    settings = (
        PublishingSettings.from_yaml(settings_file)
        if settings_file else PublishingSettings.from_env()
    )
    requester = _requester(roster, user_id)

    trace = None
    if trace_file:
        trace = TraceLogger(output_path=Path(trace_file), run_id=str(uuid.uuid4())[:8])

    if dry_run_dir:
        poster = DirectoryPoster(dry_run_dir, trace=trace)
    else:
        poster = HttpSisPoster(timeout=settings.request_timeout_seconds, trace=trace)

    queue = DeferredTaskQueue()
    orchestrator = GradeExportOrchestrator(
        roster, settings, poster=poster, queue=queue, trace=trace,
    )

    failed = False
    try:
        pending = orchestrator.publish(requester, target_user_id=student_id)
        click.echo(f"Publishing {len(pending)} enrollments via {settings.format_type}...")
        for job in queue.run_pending():
            if job.error is not None:
                failed = True
                click.echo(f"✗ {job.error}", err=True)
        for job in queue.pending:
            click.echo(f"Expiry check scheduled for {job.run_at.isoformat()}")
    except PublishingConfigurationError as e:
        failed = True
        click.echo(f"✗ Publishing refused: {e}", err=True)
    finally:
        if isinstance(poster, HttpSisPoster):
            poster.close()
        if trace:
            trace.close()
        if save_file:
            dump_course(roster, course_file, save_file)

    counts = Counter(
        getattr(e.publishing_status, "value", e.publishing_status)
        for e in orchestrator.publishable_enrollments(student_id)
    )
    for status, count in sorted(counts.items()):
        click.echo(f"  {status}: {count}")
    if save_file:
        click.echo(f"Saved: {save_file}")
    if failed:
        raise SystemExit(1)


@cli.command("statuses")
@click.argument("course_file", type=click.Path(exists=True, dir_okay=False))
def statuses(course_file: str):
    """Show grade publishing statuses of COURSE_FILE."""
    roster = load_course(course_file)
    orchestrator = GradeExportOrchestrator(roster)
    messages, overall = orchestrator.publishing_statuses()

    click.echo(f"Overall: {overall}")
    for label, enrollments in sorted(messages.items()):
        click.echo(f"  {label}: {len(enrollments)}")


@cli.command("formats")
def list_formats():
    """List available export formats."""
    registry = FormatRegistry.with_builtins()
    click.echo("Available formats:\n")
    for name in registry.names():
        info = registry.info(name)
        click.echo(f"  {name}")
        if info.get("description"):
            click.echo(f"    {info['description']}")
        click.echo()


if __name__ == "__main__":
    cli()
