"""Database command group for enrollment-sync CLI.

Commands:
- es db migrate: Run pending migrations
- es db status: Show migration status and database info
"""

from __future__ import annotations

import typer

from es.cli.common import get_settings
from es.cli.output import cli_success, cli_warning
from es.ledger.store import get_db_info, get_migration_status, run_migrations

app = typer.Typer(
    name="db",
    help="""Database operations for enrollment-sync.

Student documents and sync history live in a local SQLite database
(~/.local/share/es/students.db by default). Run 'es db migrate' after
install and after upgrades.
""",
    no_args_is_help=True,
)


@app.command("migrate")
def db_migrate(
    no_backup: bool = typer.Option(
        False,
        "--no-backup",
        help="Skip automatic backup before migration.",
    ),
) -> None:
    """Run pending database migrations.

    A backup is created automatically before migrating an existing
    database (unless --no-backup).
    """
    db_path = get_settings().db_path
    typer.echo(f"Database: {db_path}")

    result = run_migrations(db_path, backup=not no_backup)

    if result["status"] == "up_to_date":
        cli_success("Database is up to date.")
        return

    if result["status"] == "success":
        applied = result.get("applied", [])
        cli_success(f"Applied {len(applied)} migration(s):")
        for rev in applied:
            typer.echo(f"  - {rev}")
        if "backup_path" in result:
            typer.echo(f"Backup created: {result['backup_path']}")
        typer.echo(f"Current revision: {result.get('current_revision', 'unknown')}")
        return

    typer.secho("Migration failed!", fg=typer.colors.RED, err=True)
    if "error" in result:
        typer.echo(f"Error: {result['error']}", err=True)
    if "backup_available" in result:
        typer.echo(f"Backup available at: {result['backup_available']}")
    raise typer.Exit(1)


@app.command("status")
def db_status() -> None:
    """Show database file details and migration state."""
    db_path = get_settings().db_path
    db_info = get_db_info(db_path)

    typer.echo("Database Information:")
    typer.echo(f"  Path: {db_info['path']}")
    typer.echo(f"  Exists: {db_info['exists']}")

    if db_info["exists"]:
        size_bytes = db_info.get("size_bytes", 0)
        size_kb = int(size_bytes) / 1024 if isinstance(size_bytes, int) else 0
        typer.echo(f"  Size: {size_kb:.1f} KB")
        typer.echo(f"  Tables: {db_info.get('tables', '(none)')}")
        typer.echo(f"  Journal mode: {db_info.get('journal_mode', 'unknown')}")
        if "student_count" in db_info:
            typer.echo(f"  Students: {db_info['student_count']}")

    typer.echo()

    migration_status = get_migration_status(db_path)
    typer.echo("Migration Status:")
    typer.echo(f"  Head revision: {migration_status['head_revision']}")
    typer.echo(f"  Current revision: {migration_status['current_revision']}")

    pending_raw = migration_status.get("pending_revisions", [])
    pending: list[str] = pending_raw if isinstance(pending_raw, list) else []
    if pending:
        cli_warning(f"{len(pending)} pending migration(s): {', '.join(pending)}")
    else:
        cli_success("  Status: Up to date")
