"""CLI output utilities for enrollment-sync.

Provides consistent error, success, and warning message formatting.
"""

from __future__ import annotations

import json
from typing import Any, Never

import typer


def cli_error(message: str, exit_code: int = 1) -> Never:
    """Print error message to stderr and exit."""
    typer.secho(f"Error: {message}", fg=typer.colors.RED, err=True)
    raise typer.Exit(exit_code)


def cli_success(message: str) -> None:
    """Print success message."""
    typer.secho(message, fg=typer.colors.GREEN)


def cli_warning(message: str) -> None:
    """Print warning message."""
    typer.secho(f"Warning: {message}", fg=typer.colors.YELLOW, err=True)


def print_json(data: Any) -> None:
    """Print data as indented JSON (datetimes and paths as strings)."""
    typer.echo(json.dumps(data, indent=2, default=str))
