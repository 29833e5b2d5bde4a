"""Maintenance commands for enrollment-sync CLI.

Commands:
- es admin strip-passwords: Remove password fields left in stored documents
- es admin rename-email: Re-key a student document to a new email
- es admin backfill-course-refs: Stamp courseRef on older stored courses
"""

from __future__ import annotations

from typing import Annotated

import typer

from es.cli.common import get_settings
from es.cli.output import cli_error, cli_success
from es.ledger.documents import StoreConflictError, StoreError, StudentStore
from es.ledger.reconcile import is_valid_email

app = typer.Typer(
    name="admin",
    help="Maintenance operations on stored student documents.",
    no_args_is_help=True,
)


@app.command("strip-passwords")
def strip_passwords() -> None:
    """Remove any password field from stored student documents.

    Documents written by current versions never contain passwords; this
    cleans up rows imported from older document shapes.
    """
    settings = get_settings(require_db=True)
    try:
        count = StudentStore(settings.db_path).strip_passwords()
    except StoreError as e:
        cli_error(str(e))
    cli_success(f"Removed passwords from {count} student document(s).")


@app.command("backfill-course-refs")
def backfill_course_refs() -> None:
    """Add courseRef to stored courses written before it was recorded.

    Generic courses and courses that already have a courseRef are skipped.
    """
    settings = get_settings(require_db=True)
    try:
        documents, courses = StudentStore(settings.db_path).backfill_course_refs()
    except StoreError as e:
        cli_error(str(e))
    cli_success(f"Stamped courseRef on {courses} course(s) in {documents} student document(s).")


@app.command("rename-email")
def rename_email(
    old_email: Annotated[str, typer.Argument(help="Current student email.")],
    new_email: Annotated[str, typer.Argument(help="New student email.")],
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation.")] = False,
) -> None:
    """Move a student document to a new email key.

    Refuses when a document already exists for the new email.
    """
    if not is_valid_email(new_email):
        cli_error(f"Not a valid email address: {new_email}")

    settings = get_settings(require_db=True)
    if not yes:
        typer.confirm(f"Rename {old_email} to {new_email}?", abort=True)

    try:
        snapshot = StudentStore(settings.db_path).rename_email(old_email, new_email)
    except StoreConflictError as e:
        cli_error(str(e))
    except StoreError as e:
        cli_error(str(e))
    cli_success(f"Renamed to {snapshot.email} ({len(snapshot.courses)} course(s)).")
