"""Sync commands for enrollment-sync CLI.

Commands:
- es sync run: Fetch, map and reconcile orders for a window
- es sync status: Show recent sync runs
"""

from __future__ import annotations

from datetime import datetime
from typing import Annotated

import typer

from es.cli.common import get_settings
from es.cli.output import cli_error, cli_success, cli_warning, print_json
from es.config.secrets import SecretProviderError
from es.ledger.documents import StoreError
from es.ledger.models import SyncStatus, SyncTrigger
from es.orders.client import OrderAuthenticationError, OrderClientError, SyncWindow
from es.sync.runner import SyncInProgressError, build_pipeline, get_sync_runs

app = typer.Typer(
    name="sync",
    help="""Reconcile course purchases into student records.

A run fetches orders modified inside a window (the last few minutes by
default), maps SERVICE line items to course records, and merges them into
per-student documents. Runs are idempotent: overlapping windows never
duplicate a course.
""",
    no_args_is_help=True,
)


def _build_window(lookback: int | None, start: datetime | None, end: datetime | None, default: int) -> SyncWindow:
    if start is not None or end is not None:
        if start is None or end is None:
            cli_error("--start and --end must be given together")
        if lookback is not None:
            cli_error("Use either --lookback or --start/--end, not both")
        try:
            return SyncWindow.between(start, end)
        except ValueError as e:
            cli_error(str(e))
    try:
        return SyncWindow.lookback(lookback or default)
    except ValueError as e:
        cli_error(str(e))


@app.command("run")
def sync_run(
    lookback: Annotated[
        int | None,
        typer.Option("--lookback", "-l", help="Fetch orders modified in the last N minutes."),
    ] = None,
    start: Annotated[
        datetime | None,
        typer.Option("--start", help="Window start (ISO 8601, UTC if no offset)."),
    ] = None,
    end: Annotated[
        datetime | None,
        typer.Option("--end", help="Window end (ISO 8601, UTC if no offset)."),
    ] = None,
    dry_run: Annotated[
        bool,
        typer.Option("--dry-run", "-n", help="Fetch and map only; print course records, write nothing."),
    ] = False,
    as_json: Annotated[
        bool,
        typer.Option("--json", help="Print the result as JSON."),
    ] = False,
) -> None:
    """Run one sync now.

    \b
    Examples:
      es sync run
      es sync run --lookback 60
      es sync run --start 2024-01-01T00:00:00 --end 2024-01-02T00:00:00
      es sync run --lookback 1440 --dry-run
    """
    settings = get_settings(require_db=not dry_run)
    window = _build_window(lookback, start, end, settings.lookback_minutes)

    try:
        pipeline = build_pipeline(settings)
    except SecretProviderError as e:
        cli_error(str(e))

    if not as_json:
        typer.echo(f"Syncing orders modified between {window.describe()}...")

    try:
        result = pipeline.run(window, trigger=SyncTrigger.CLI, wait=False, dry_run=dry_run)
    except SyncInProgressError as e:
        cli_error(str(e))
    except OrderAuthenticationError as e:
        cli_error(str(e))
    except OrderClientError as e:
        cli_error(f"Commerce API error: {e}")
    except StoreError as e:
        cli_error(f"Store rejected the write batch: {e}")
    finally:
        pipeline.close()

    if dry_run:
        if as_json:
            print_json([record.to_dict() for record in result.records])
            return
        cli_success(f"Dry run: {result.courses_mapped} course(s) from {result.orders_fetched} order(s).")
        for record in result.records:
            typer.echo(
                f"  {record.order_number or record.order_id}  {record.course_type.value:<18} "
                f"{record.course_name}  [{record.section or '-'} / {record.plan or '-'}]  "
                f"{record.resolve_email() or '(no email)'}"
            )
        return

    if as_json:
        print_json(result.to_dict())
        return

    reconcile = result.reconcile
    assert reconcile is not None
    cli_success(f"Sync run {result.run_id} complete.")
    typer.echo(f"  Orders:    {result.orders_fetched}")
    typer.echo(f"  Courses:   {result.courses_mapped}")
    typer.echo(f"  Persisted: {reconcile.persisted_count}")
    typer.echo(f"  Created:   {reconcile.created_count}")
    typer.echo(f"  Merged:    {reconcile.merged_count}")
    typer.echo(f"  Unchanged: {reconcile.unchanged_count}")
    if reconcile.invalid_count:
        cli_warning(f"Dropped {reconcile.invalid_count} course record(s) with an invalid email.")


@app.command("status")
def sync_status(
    limit: Annotated[int, typer.Option("--limit", "-n", help="Number of runs to show.")] = 10,
    as_json: Annotated[bool, typer.Option("--json", help="Print runs as JSON.")] = False,
) -> None:
    """Show recent sync runs, most recent first."""
    settings = get_settings(require_db=True)
    runs = get_sync_runs(settings.db_path, limit=limit)

    if as_json:
        print_json([run.to_dict() for run in runs])
        return

    if not runs:
        typer.echo("No sync runs recorded yet.")
        return

    for run in runs:
        color = {
            SyncStatus.COMPLETED: typer.colors.GREEN,
            SyncStatus.FAILED: typer.colors.RED,
        }.get(run.status, typer.colors.YELLOW)
        typer.secho(
            f"#{run.id}  {run.started_at:%Y-%m-%d %H:%M:%S}  {run.trigger.value:<6}  {run.status.value}",
            fg=color,
        )
        if run.status == SyncStatus.FAILED:
            typer.echo(f"    error: {run.error_message}")
        else:
            typer.echo(
                f"    orders={run.orders_fetched} courses={run.courses_mapped} "
                f"persisted={run.persisted_count} created={run.created_count} "
                f"merged={run.merged_count} invalid={run.invalid_count}"
            )
