"""Config command group for enrollment-sync CLI.

Commands:
- es config init: Write a config file
- es config show: Display current configuration
- es config set: Update one configuration value
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path

import typer

from es.cli.output import cli_error, cli_success
from es.config.secrets import Secret, SecretProviderError, get_secret_provider
from es.config.settings import (
    Settings,
    ensure_directories,
    get_default_config_path,
    load_settings,
    save_settings,
)

app = typer.Typer(
    name="config",
    help="""Manage enrollment-sync configuration.

Configuration is stored in ~/.config/es/config.toml. API keys are NEVER
stored in the config file: use ES_* environment variables or 1Password.
""",
    no_args_is_help=True,
)

SETTABLE_KEYS = tuple(f.name for f in fields(Settings) if f.name != "config_path")


@app.command("init")
def config_init(
    orders_api_url: str | None = typer.Option(
        None,
        "--orders-api-url",
        "-u",
        help="Commerce API base URL.",
    ),
    db_path: Path | None = typer.Option(
        None,
        "--db-path",
        "-d",
        help="Path to SQLite database file.",
    ),
    secret_provider: str = typer.Option(
        "env",
        "--secret-provider",
        "-s",
        help="Where API keys come from (env or 1password).",
    ),
    op_vault: str = typer.Option(
        "",
        "--op-vault",
        "-o",
        help="1Password vault holding the API key items.",
    ),
    force: bool = typer.Option(
        False,
        "--force",
        "-f",
        help="Overwrite existing configuration.",
    ),
) -> None:
    """Create a config file with defaults plus the given options.

    \b
    Examples:
      es config init
      es config init -s 1password -o Enrollment
    """
    config_path = get_default_config_path()
    if config_path.exists() and not force:
        typer.secho(f"Configuration already exists at {config_path}", fg=typer.colors.YELLOW)
        typer.echo("Use --force to overwrite.")
        raise typer.Exit(1)

    settings = Settings(config_path=config_path, secret_provider=secret_provider, op_vault=op_vault)
    if orders_api_url:
        settings.orders_api_url = orders_api_url
    if db_path:
        settings.db_path = db_path

    errors = settings.validate()
    if errors:
        cli_error("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    ensure_directories(settings)
    save_settings(settings)

    cli_success(f"Configuration saved to {config_path}")
    typer.echo()
    typer.echo("Next steps:")
    if settings.secret_provider == "1password":
        typer.echo("  1. Sign in to the 1Password CLI: op signin")
    else:
        typer.echo("  1. Export API keys:")
        for secret in Secret:
            typer.echo(f"     export {secret.value}='...'")
    typer.echo("  2. Initialize the database: es db migrate")


@app.command("show")
def config_show(
    reveal: bool = typer.Option(
        False,
        "--reveal",
        "-r",
        help="Show whether each API key is available (never prints keys).",
    ),
) -> None:
    """Display current configuration. Secrets are never displayed."""
    try:
        settings = load_settings()
    except ValueError as e:
        cli_error(str(e))

    source = "" if settings.config_path.exists() else " (not found, using defaults)"
    typer.echo("Current configuration:")
    typer.echo(f"  Config file: {settings.config_path}{source}")
    for key, value in settings.to_dict().items():
        typer.echo(f"  {key}: {value}")

    if reveal:
        typer.echo()
        typer.echo("API keys:")
        try:
            provider = get_secret_provider(settings.secret_provider, settings.op_vault)
        except SecretProviderError as e:
            cli_error(str(e))
        for secret in Secret:
            if provider.is_available(secret):
                typer.secho(f"  {secret.value}: configured", fg=typer.colors.GREEN)
            else:
                typer.secho(f"  {secret.value}: not configured", fg=typer.colors.YELLOW)


@app.command("set")
def config_set(
    key: str = typer.Argument(..., help="Configuration key to set."),
    value: str = typer.Argument(..., help="Value to set."),
) -> None:
    """Update a configuration value.

    API keys cannot be set here. Use environment variables or 1Password.
    """
    if key not in SETTABLE_KEYS:
        cli_error(f"Unknown configuration key: {key}. Valid keys: {', '.join(SETTABLE_KEYS)}")

    try:
        settings = load_settings()
    except ValueError as e:
        cli_error(str(e))
    current = getattr(settings, key)
    try:
        if isinstance(current, Path):
            setattr(settings, key, Path(value).expanduser())
        elif isinstance(current, int):
            setattr(settings, key, int(value))
        else:
            setattr(settings, key, value)
    except ValueError:
        cli_error(f"{key} must be an integer")

    errors = settings.validate()
    if errors:
        cli_error("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    save_settings(settings)
    cli_success(f"Updated {key} = {value}")
