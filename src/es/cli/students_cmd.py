"""Student lookup commands for enrollment-sync CLI."""

from __future__ import annotations

from typing import Annotated

import typer

from es.cli.common import get_settings
from es.cli.output import cli_error, print_json
from es.ledger.documents import StudentStore

app = typer.Typer(
    name="students",
    help="Inspect stored student documents.",
    no_args_is_help=True,
)


@app.command("show")
def students_show(
    email: Annotated[str, typer.Argument(help="Student email (case-insensitive).")],
    as_json: Annotated[bool, typer.Option("--json", help="Print the full document as JSON.")] = False,
) -> None:
    """Show one student's document and enrolled courses."""
    settings = get_settings(require_db=True)
    doc = StudentStore(settings.db_path).get_document(email)
    if doc is None:
        cli_error(f"No student document found for {email}")

    if as_json:
        print_json(doc)
        return

    info = doc["student_info"]
    name = " ".join(part for part in (info.get("firstName"), info.get("lastName")) if part)
    typer.echo(f"{name or '(no name)'} <{doc['email']}>")
    typer.echo(f"  Created:     {doc['created_at']}")
    typer.echo(f"  Last synced: {doc['last_synced_at']}")
    typer.echo(f"  Courses ({len(doc['courses'])}):")
    for course in doc["courses"]:
        details = " / ".join(v for v in (course.get("section"), course.get("plan")) if v)
        typer.echo(f"    - {course.get('courseName')} ({course.get('courseType')}) {details}".rstrip())
