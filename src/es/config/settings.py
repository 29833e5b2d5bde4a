"""Settings for enrollment-sync.

Configuration lives in ~/.config/es/config.toml. Any field can be overridden
with an ES_-prefixed environment variable (ES_DB_PATH, ES_LOG_LEVEL, ...).
API keys are never read from or written to the config file; see
es.config.secrets.
"""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

APP_DIR_NAME = "es"
ENV_PREFIX = "ES_"

VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
VALID_SECRET_PROVIDERS = ("env", "1password")


def get_default_config_path() -> Path:
    """Config file path, honoring XDG_CONFIG_HOME."""
    base = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base) / APP_DIR_NAME / "config.toml"


def get_default_db_path() -> Path:
    """Database path, honoring XDG_DATA_HOME."""
    base = os.environ.get("XDG_DATA_HOME") or str(Path.home() / ".local" / "share")
    return Path(base) / APP_DIR_NAME / "students.db"


@dataclass
class Settings:
    """Runtime configuration."""

    orders_api_url: str = "https://api.squarespace.com/1.0"
    db_path: Path = field(default_factory=get_default_db_path)
    config_path: Path = field(default_factory=get_default_config_path)
    log_level: str = "INFO"
    secret_provider: str = "env"
    op_vault: str = ""
    sync_interval_minutes: int = 15
    lookback_minutes: int = 6
    portal_url: str = "https://portal.tanwir.org"
    from_name: str = "Tanwir Institute"
    from_email: str = "noreply@tanwirinstitute.org"

    def validate(self) -> list[str]:
        """Return a list of validation errors (empty if valid)."""
        errors: list[str] = []

        for name in ("orders_api_url", "portal_url"):
            value = getattr(self, name)
            if not value.startswith(("http://", "https://")):
                errors.append(f"{name} must start with http:// or https:// (got {value!r})")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(
                f"log_level must be one of {', '.join(VALID_LOG_LEVELS)} (got {self.log_level!r})"
            )

        if self.secret_provider not in VALID_SECRET_PROVIDERS:
            errors.append(
                f"secret_provider must be one of {', '.join(VALID_SECRET_PROVIDERS)} "
                f"(got {self.secret_provider!r})"
            )
        elif self.secret_provider == "1password" and not self.op_vault:
            errors.append("op_vault is required when secret_provider is 1password")

        if self.sync_interval_minutes <= 0:
            errors.append("sync_interval_minutes must be positive")
        if self.lookback_minutes <= 0:
            errors.append("lookback_minutes must be positive")

        if "@" not in self.from_email:
            errors.append(f"from_email is not an email address (got {self.from_email!r})")

        return errors

    def to_dict(self) -> dict[str, Any]:
        """Settings as plain values (paths as strings), config_path excluded."""
        data: dict[str, Any] = {}
        for f in fields(self):
            if f.name == "config_path":
                continue
            value = getattr(self, f.name)
            data[f.name] = str(value) if isinstance(value, Path) else value
        return data


def _coerce(name: str, raw: Any) -> Any:
    """Convert a TOML or environment value to the field's type."""
    if name in ("db_path", "config_path"):
        return Path(str(raw)).expanduser()
    if name in ("sync_interval_minutes", "lookback_minutes"):
        try:
            return int(raw)
        except (TypeError, ValueError) as e:
            raise ValueError(f"{name} must be an integer (got {raw!r})") from e
    return str(raw)


def load_settings(config_path: Path | None = None) -> Settings:
    """Load settings from TOML, then apply ES_* environment overrides.

    A missing config file yields defaults.

    Raises:
        ValueError: If the file is not valid TOML or a value has the wrong type.
    """
    config_path = config_path or Path(
        os.environ.get(f"{ENV_PREFIX}CONFIG_PATH") or get_default_config_path()
    )
    values: dict[str, Any] = {}

    if config_path.exists():
        try:
            with config_path.open("rb") as f:
                values.update(tomllib.load(f))
        except tomllib.TOMLDecodeError as e:
            raise ValueError(f"Invalid config file {config_path}: {e}") from e
        logger.debug("Loaded configuration from %s", config_path)

    known = {f.name for f in fields(Settings)} - {"config_path"}
    unknown = set(values) - known
    for key in sorted(unknown):
        logger.warning("Ignoring unknown config key %r in %s", key, config_path)

    for name in known:
        env_value = os.environ.get(f"{ENV_PREFIX}{name.upper()}")
        if env_value is not None:
            values[name] = env_value

    kwargs = {name: _coerce(name, values[name]) for name in known if name in values}
    return Settings(config_path=config_path, **kwargs)


_TOML_ESCAPES = {
    "\\": "\\\\",
    '"': '\\"',
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


def _toml_escape(char: str) -> str:
    if char in _TOML_ESCAPES:
        return _TOML_ESCAPES[char]
    if ord(char) < 0x20 or ord(char) == 0x7F:
        return f"\\u{ord(char):04X}"
    return char


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    escaped = "".join(_toml_escape(char) for char in str(value))
    return f'"{escaped}"'


def save_settings(settings: Settings) -> None:
    """Write settings to settings.config_path as TOML."""
    settings.config_path.parent.mkdir(parents=True, exist_ok=True)
    lines = ["# enrollment-sync configuration", "# API keys are never stored here."]
    lines.extend(f"{key} = {_toml_value(value)}" for key, value in settings.to_dict().items())
    settings.config_path.write_text("\n".join(lines) + "\n")


def ensure_directories(settings: Settings) -> None:
    """Create the config and database parent directories."""
    settings.config_path.parent.mkdir(parents=True, exist_ok=True)
    settings.db_path.parent.mkdir(parents=True, exist_ok=True)
