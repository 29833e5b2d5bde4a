"""Main CLI application for enrollment-sync.

Provides the root Typer application with version flag, logging setup and
the long-running `es serve` command.
"""

from __future__ import annotations

import logging

import typer

from es import __version__
from es.config.settings import load_settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

app: typer.Typer = typer.Typer(
    name="es",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging once; the es logger tree follows ``level``."""
    numeric = logging.getLevelName(level.upper())
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logging.basicConfig(level=numeric, format=LOG_FORMAT)
    logging.getLogger("es").setLevel(numeric)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"enrollment-sync (es) version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug output.",
    ),
) -> None:
    """enrollment-sync: reconcile course purchases into student records.

    Pulls recent orders from the commerce API, turns each course line item
    into a course record, and merges those records into one document per
    student email. New students get a sign-in account and a welcome email.
    \b
    Getting Started:
      1. es config init        Write a config file
      2. es db migrate         Initialize the local database
      3. es sync run --dry-run See what the last few minutes of orders map to
      4. es serve              Run the scheduler and HTTP trigger
    """
    if verbose:
        configure_logging("DEBUG")
        return
    try:
        configure_logging(load_settings().log_level)
    except ValueError:
        configure_logging("INFO")


@app.command("serve")
def serve(
    host: str = typer.Option("0.0.0.0", "--host", help="Interface to bind."),
    port: int = typer.Option(3000, "--port", "-p", envvar="PORT", help="Port to listen on."),
    no_scheduler: bool = typer.Option(
        False,
        "--no-scheduler",
        help="Serve the HTTP trigger only; do not run the interval timer.",
    ),
) -> None:
    """Run the HTTP trigger surface and the interval scheduler.

    \b
    Endpoints:
      GET  /              health check
      GET  /health        health plus last run details
      POST /trigger-sync  run now; body {"lookback_minutes": N} or {"start": ..., "end": ...}
    """
    import uvicorn

    from es.api.app import create_app
    from es.cli.common import get_settings
    from es.cli.output import cli_error
    from es.config.secrets import SecretProviderError
    from es.ledger.store import get_current_revision
    from es.sync.runner import build_pipeline
    from es.sync.scheduler import IntervalScheduler

    settings = get_settings(require_db=True)
    if get_current_revision(settings.db_path) is None:
        cli_error("Database has no schema. Run 'es db migrate' first.")

    try:
        pipeline = build_pipeline(settings)
    except SecretProviderError as e:
        cli_error(str(e))

    scheduler = None
    if not no_scheduler:
        scheduler = IntervalScheduler(
            pipeline,
            interval_minutes=settings.sync_interval_minutes,
            lookback_minutes=settings.lookback_minutes,
        )

    api = create_app(pipeline, scheduler=scheduler, default_lookback=settings.lookback_minutes)
    uvicorn.run(api, host=host, port=port, log_level=settings.log_level.lower())


from es.cli.output import cli_error, cli_success, cli_warning  # noqa: E402

__all__ = ["app", "cli_error", "cli_success", "cli_warning", "configure_logging"]

# Import and register command groups
# These imports are at the bottom to avoid circular imports
from es.cli import admin_cmd, config_cmd, db_cmd, orders_cmd, students_cmd, sync_cmd  # noqa: E402

app.add_typer(config_cmd.app, name="config")
app.add_typer(db_cmd.app, name="db")
app.add_typer(sync_cmd.app, name="sync")
app.add_typer(orders_cmd.app, name="orders")
app.add_typer(students_cmd.app, name="students")
app.add_typer(admin_cmd.app, name="admin")


if __name__ == "__main__":
    app()
