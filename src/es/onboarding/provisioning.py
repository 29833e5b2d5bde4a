"""Credential provisioning for newly seen students.

Creates a sign-in account through the Firebase Identity Toolkit REST API.
An account that already exists counts as success, so provisioning is
idempotent across runs.
"""

from __future__ import annotations

import logging
import secrets
from enum import Enum
from typing import Protocol

import httpx

logger = logging.getLogger(__name__)

SIGNUP_URL = "https://identitytoolkit.googleapis.com/v1/accounts:signUp"
MIN_PASSWORD_LENGTH = 6


class ProvisioningError(Exception):
    """Raised when account creation fails for a reason other than a duplicate."""

    pass


class ProvisionOutcome(str, Enum):
    """Result of a create-user call."""

    CREATED = "created"
    EXISTS = "exists"


class CredentialProvisioner(Protocol):
    """Anything that can create a sign-in account for a student."""

    def create_user(self, email: str, password: str, display_name: str) -> ProvisionOutcome: ...


def generate_password(length: int = 12) -> str:
    """Random password for students who did not choose one at checkout."""
    return secrets.token_urlsafe(length)[:length]


def resolve_password(password: str | None) -> str:
    """The student's checkout password if the auth provider will accept it, else a generated one."""
    if password and len(password) >= MIN_PASSWORD_LENGTH:
        return password
    return generate_password()


class FirebaseAuthProvisioner:
    """Create-user-if-absent against Firebase Authentication."""

    def __init__(
        self,
        api_key: str,
        client: httpx.Client | None = None,
        signup_url: str = SIGNUP_URL,
    ) -> None:
        self._api_key = api_key
        self._signup_url = signup_url
        self.client = client or httpx.Client(timeout=30.0)

    def create_user(self, email: str, password: str, display_name: str) -> ProvisionOutcome:
        """Create an email/password account.

        Returns:
            CREATED for a new account, EXISTS if the email is already registered.

        Raises:
            ProvisioningError: For any other failure.
        """
        payload = {
            "email": email,
            "password": password,
            "displayName": display_name or email,
            "returnSecureToken": False,
        }
        try:
            response = self.client.post(self._signup_url, params={"key": self._api_key}, json=payload)
        except httpx.HTTPError as e:
            raise ProvisioningError(f"Auth provider request failed for {email}: {e}") from e

        if response.is_success:
            logger.info("Created sign-in account for %s", email)
            return ProvisionOutcome.CREATED

        message = _error_message(response)
        if message.startswith("EMAIL_EXISTS"):
            logger.info("Sign-in account for %s already exists", email)
            return ProvisionOutcome.EXISTS

        raise ProvisioningError(
            f"Auth provider rejected account for {email}: HTTP {response.status_code} {message}"
        )


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        return response.text[:200]
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or "")
    return ""
