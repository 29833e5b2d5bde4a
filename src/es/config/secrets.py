"""Secret retrieval for enrollment-sync.

API keys come from environment variables or the 1Password CLI, never from
the config file:

    ES_ORDERS_API_KEY    commerce Orders API key (required)
    ES_BREVO_API_KEY     transactional email key (welcome email disabled without it)
    ES_FIREBASE_API_KEY  auth provider key (account provisioning disabled without it)

With the 1password provider each key is read from
op://<vault>/<item>/credential.
"""

from __future__ import annotations

import logging
import os
import shutil
import subprocess
from enum import Enum
from typing import Protocol

logger = logging.getLogger(__name__)


class SecretProviderError(Exception):
    """Raised when a secret cannot be retrieved."""

    pass


class Secret(str, Enum):
    """Secrets the service uses, by environment variable name."""

    ORDERS_API_KEY = "ES_ORDERS_API_KEY"
    BREVO_API_KEY = "ES_BREVO_API_KEY"
    FIREBASE_API_KEY = "ES_FIREBASE_API_KEY"

    @property
    def op_item(self) -> str:
        """1Password item name holding this secret."""
        return {
            Secret.ORDERS_API_KEY: "Squarespace",
            Secret.BREVO_API_KEY: "Brevo",
            Secret.FIREBASE_API_KEY: "Firebase",
        }[self]


class SecretProvider(Protocol):
    def get(self, secret: Secret) -> str: ...

    def is_available(self, secret: Secret) -> bool: ...


class EnvSecretProvider:
    """Read secrets from environment variables."""

    def get(self, secret: Secret) -> str:
        value = os.environ.get(secret.value, "").strip()
        if not value:
            raise SecretProviderError(
                f"{secret.value} is not set. Export it before running: "
                f"export {secret.value}='...'"
            )
        return value

    def is_available(self, secret: Secret) -> bool:
        return bool(os.environ.get(secret.value, "").strip())


class OnePasswordSecretProvider:
    """Read secrets with the 1Password CLI (`op read`)."""

    def __init__(self, vault: str, op_binary: str = "op", timeout: float = 30.0) -> None:
        if not vault:
            raise SecretProviderError("A 1Password vault is required (set op_vault)")
        self._vault = vault
        self._op_binary = op_binary
        self._timeout = timeout

    def reference(self, secret: Secret) -> str:
        return f"op://{self._vault}/{secret.op_item}/credential"

    def get(self, secret: Secret) -> str:
        if shutil.which(self._op_binary) is None:
            raise SecretProviderError("1Password CLI (op) not found on PATH")

        reference = self.reference(secret)
        try:
            completed = subprocess.run(
                [self._op_binary, "read", reference],
                capture_output=True,
                text=True,
                timeout=self._timeout,
                check=True,
            )
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()
            raise SecretProviderError(f"op read {reference} failed: {stderr or e}") from e
        except subprocess.TimeoutExpired as e:
            raise SecretProviderError(f"op read {reference} timed out") from e

        value = completed.stdout.strip()
        if not value:
            raise SecretProviderError(f"op read {reference} returned an empty value")
        return value

    def is_available(self, secret: Secret) -> bool:
        try:
            self.get(secret)
        except SecretProviderError:
            return False
        return True


def get_secret_provider(name: str, op_vault: str = "") -> SecretProvider:
    """Return the provider configured by ``secret_provider``.

    Raises:
        SecretProviderError: For an unknown provider name.
    """
    if name == "env":
        return EnvSecretProvider()
    if name == "1password":
        return OnePasswordSecretProvider(op_vault)
    raise SecretProviderError(f"Unknown secret provider: {name!r}")


def get_optional_secret(provider: SecretProvider, secret: Secret) -> str | None:
    """Fetch a secret whose absence only disables a side effect."""
    try:
        return provider.get(secret)
    except SecretProviderError as e:
        logger.warning("%s unavailable: %s", secret.value, e)
        return None
