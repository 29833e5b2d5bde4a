"""Settings helpers shared by the command groups."""

from __future__ import annotations

from es.cli.output import cli_error
from es.config.settings import Settings, load_settings


def get_settings(require_db: bool = False) -> Settings:
    """Load and validate settings, exiting with a message on any problem."""
    try:
        settings = load_settings()
    except ValueError as e:
        cli_error(str(e))

    errors = settings.validate()
    if errors:
        cli_error("Configuration errors:\n" + "\n".join(f"  - {e}" for e in errors))

    if require_db and not settings.db_path.exists():
        cli_error(f"Database not found at {settings.db_path}. Run 'es db migrate' first.")

    return settings
