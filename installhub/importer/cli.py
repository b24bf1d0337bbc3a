"""
Flask CLI commands for the partner importer.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import click
from celery import Celery
from celery.exceptions import TimeoutError as CeleryTimeoutError
from flask.cli import AppGroup, ScriptInfo

from installhub.importer.celery_app import DEFAULT_QUEUE_NAME, PARTNER_IMPORT_TASK, get_celery_app
from installhub.importer.errors import ImportConfigError
from installhub.importer.pipeline.run_service import ImportRequest, list_profile_runs, run_partner_import
from installhub.importer.pipeline.summary import RunSummary
from installhub.importer.profile import load_profile_document, upsert_profile, validate_profile_document
from installhub.models import db
from installhub.utils.importer import is_importer_enabled


@click.group(name="importer", cls=AppGroup, invoke_without_command=True)
@click.pass_context
def importer_cli(ctx):
    """Partner importer commands."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not is_importer_enabled(app):
        raise click.ClickException(
            "Importer is disabled via IMPORTER_ENABLED=false. Enable it to run importer CLI commands."
        )
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


def get_disabled_importer_group() -> click.Group:
    """Command group that only tells the operator the importer is disabled."""

    @click.group(name="importer", invoke_without_command=True)
    def disabled_group():
        raise click.ClickException("Importer commands are unavailable because IMPORTER_ENABLED=false.")

    return disabled_group


def _resolve_celery(app) -> Celery:
    celery_app = get_celery_app(app)
    if celery_app is None:
        raise click.ClickException(
            "Importer Celery app is unavailable. Ensure IMPORTER_ENABLED=true and the worker is configured."
        )
    return celery_app


def _format_summary(summary: RunSummary) -> str:
    mode = "dry run" if summary.dry_run else "applied"
    lines = [
        f"Partner import {summary.run_id} ({summary.partner_name or 'unknown partner'}, {mode})",
        f"  processed: {summary.processed}",
        f"  inserted:  {summary.inserted_count}",
        f"  updated:   {summary.updated_count}",
        f"  skipped:   {summary.skipped_count}",
        f"  errors:    {summary.error_count}",
        f"  warnings:  {len(summary.warnings)}",
        f"  duration:  {summary.duration_ms} ms",
    ]
    for entry in summary.errors:
        lines.append(f"  ! row {entry.row_index}: {entry.message}")
    return "\n".join(lines)


@importer_cli.command("partner-import")
@click.option("--profile-id", required=True, type=int, help="Import profile to run.")
@click.option(
    "--file",
    "file_path",
    type=click.Path(path_type=Path, exists=True, dir_okay=False),
    help="CSV file to import. Spreadsheet profiles fetch their sheet when omitted.",
)
@click.option(
    "--dry-run/--apply",
    default=True,
    show_default=True,
    help="Dry runs classify every row without writing orders or clients.",
)
@click.option(
    "--create-missing/--no-create-missing",
    default=True,
    show_default=True,
    help="Insert orders for rows that match no existing order.",
)
@click.option(
    "--inline/--no-inline",
    default=True,
    show_default=True,
    help="Run inside the CLI process instead of queueing on the importer worker.",
)
@click.option("--summary-json", is_flag=True, help="Emit the camelCase summary payload as JSON.")
@click.pass_context
def partner_import(
    ctx,
    profile_id: int,
    file_path: Optional[Path],
    dry_run: bool,
    create_missing: bool,
    inline: bool,
    summary_json: bool,
):
    """Import partner jobs for an import profile."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()

    csv_data = file_path.read_text(encoding="utf-8-sig") if file_path is not None else None
    request = ImportRequest(
        profile_id=profile_id,
        dry_run=dry_run,
        create_missing_orders=create_missing,
        csv_data=csv_data,
        triggered_by="cli",
    )

    if not inline:
        celery_app = _resolve_celery(app)
        try:
            async_result = celery_app.send_task(
                PARTNER_IMPORT_TASK,
                kwargs={"payload": request.as_payload(), "triggered_by": "cli"},
            )
        except Exception as exc:  # pragma: no cover - broker failures
            raise click.ClickException(f"Failed to enqueue partner import: {exc}") from exc
        app.logger.info(
            "Partner import queued via CLI",
            extra={"importer_task_id": async_result.id, "importer_profile_id": profile_id, "importer_dry_run": dry_run},
        )
        click.echo(json.dumps({"task_id": async_result.id, "status": "queued", "profileId": profile_id}))
        return

    try:
        summary = run_partner_import(request)
    except ImportConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    if summary_json:
        click.echo(json.dumps({"summary": summary.as_dict()}, indent=2, sort_keys=True))
    else:
        click.echo(_format_summary(summary))


@importer_cli.command("runs")
@click.option("--profile-id", required=True, type=int)
@click.option("--limit", type=int, help="Number of runs to show.")
def importer_runs(profile_id: int, limit: Optional[int]):
    """List recent partner import runs for a profile."""
    runs = list_profile_runs(profile_id, limit=limit)
    if not runs:
        click.echo(f"No runs recorded for profile {profile_id}.")
        return
    for run in runs:
        payload = run.as_dict()
        click.echo(
            f"{payload['runId']} {payload['status']} dry_run={payload['dryRun']} "
            f"processed={payload['processed']} inserted={payload['insertedCount']} "
            f"updated={payload['updatedCount']} skipped={payload['skippedCount']} "
            f"errors={len(payload['errors'])}"
        )


@importer_cli.group(name="profiles")
def profiles_group():
    """Manage import profiles stored as YAML documents."""


@profiles_group.command("validate")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path, dir_okay=False))
def profiles_validate(paths: tuple[Path, ...]):
    """Validate profile documents without saving them."""
    failures = 0
    for path in paths:
        try:
            document = load_profile_document(path)
            _, _, config = validate_profile_document(document)
        except ImportConfigError as exc:
            failures += 1
            click.echo(f"{path}: invalid - {exc}", err=True)
            continue
        click.echo(f"{path}: ok ({config.partner_name} / {config.name}, checksum {config.checksum[:12]})")
    if failures:
        raise click.ClickException(f"{failures} profile document(s) failed validation.")


@profiles_group.command("load")
@click.argument("paths", nargs=-1, required=True, type=click.Path(path_type=Path, dir_okay=False))
@click.pass_context
def profiles_load(ctx, paths: tuple[Path, ...]):
    """Create or update import profiles from YAML documents."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    loaded = []
    try:
        for path in paths:
            profile = upsert_profile(load_profile_document(path))
            loaded.append((path, profile))
        db.session.commit()
    except ImportConfigError as exc:
        db.session.rollback()
        raise click.ClickException(str(exc)) from exc

    for path, profile in loaded:
        app.logger.info(
            "Import profile loaded",
            extra={"importer_profile_id": profile.id, "importer_profile_name": profile.name, "importer_profile_path": str(path)},
        )
        click.echo(f"{path}: saved profile {profile.id} ({profile.name})")


@importer_cli.group(name="worker")
@click.pass_context
def worker_group(ctx):
    """Manage the importer background worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    if not app.config.get("IMPORTER_WORKER_ENABLED"):
        click.echo(
            "Warning: IMPORTER_WORKER_ENABLED is false. Commands will still run, "
            "but queued imports are not accepted over HTTP.",
            err=True,
        )


@worker_group.command("run")
@click.option("--loglevel", default="info", show_default=True)
@click.option("--concurrency", type=int, help="Number of worker processes/threads.")
@click.option("--pool", type=str, help="Celery pool implementation (e.g., 'prefork', 'solo', 'threads').")
@click.option("--queues", default=DEFAULT_QUEUE_NAME, show_default=True, help="Comma-separated queue list to consume.")
@click.pass_context
def worker_run(ctx, loglevel: str, concurrency: Optional[int], pool: Optional[str], queues: str):
    """Start the Celery worker in the current process."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)

    argv = ["worker", "--loglevel", loglevel, "-Q", queues]
    if concurrency:
        argv.extend(["--concurrency", str(concurrency)])
    if pool:
        argv.extend(["--pool", pool])

    click.echo(f"Starting importer worker (queues: {queues}, loglevel: {loglevel})")
    try:
        celery_app.worker_main(argv=argv)
    except KeyboardInterrupt:
        click.echo("Worker shutdown requested. Exiting...")


@worker_group.command("ping")
@click.option("--timeout", default=10.0, show_default=True, help="Seconds to wait for a response.")
@click.pass_context
def worker_ping(ctx, timeout: float):
    """Run the heartbeat task on the worker."""
    info = ctx.ensure_object(ScriptInfo)
    app = info.load_app()
    celery_app = _resolve_celery(app)
    task = celery_app.tasks.get("importer.healthcheck")
    if task is None:
        raise click.ClickException("Heartbeat task 'importer.healthcheck' is not registered.")

    result = task.apply_async()
    try:
        payload = result.get(timeout=timeout)
    except CeleryTimeoutError as exc:
        raise click.ClickException(f"Worker did not respond within {timeout}s") from exc

    click.echo(json.dumps(payload, indent=2))
