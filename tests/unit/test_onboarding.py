"""Unit tests for credential provisioning and the welcome email sender."""

from __future__ import annotations

import json

import httpx
import pytest

from es.onboarding.email import PASSWORD_PLACEHOLDER, BrevoWelcomeSender, build_welcome_html
from es.onboarding.provisioning import (
    MIN_PASSWORD_LENGTH,
    FirebaseAuthProvisioner,
    ProvisioningError,
    ProvisionOutcome,
    generate_password,
    resolve_password,
)


def mock_client(handler) -> tuple[httpx.Client, list[httpx.Request]]:
    requests: list[httpx.Request] = []

    def recording(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return handler(request)

    return httpx.Client(transport=httpx.MockTransport(recording)), requests


class TestPasswords:
    def test_generated_password_length(self) -> None:
        assert len(generate_password()) == 12
        assert generate_password() != generate_password()

    def test_checkout_password_is_kept(self) -> None:
        assert resolve_password("chosen-pw") == "chosen-pw"

    @pytest.mark.parametrize("password", [None, "", "abc"])
    def test_short_or_missing_password_is_generated(self, password: str | None) -> None:
        resolved = resolve_password(password)
        assert resolved != password
        assert len(resolved) >= MIN_PASSWORD_LENGTH


class TestFirebaseAuthProvisioner:
    """Tests for create-user-if-absent."""

    def test_created(self) -> None:
        client, requests = mock_client(lambda r: httpx.Response(200, json={"localId": "u1"}))
        provisioner = FirebaseAuthProvisioner("fb-key", client=client)

        outcome = provisioner.create_user("amina@example.com", "chosen-pw", "Amina Khan")

        assert outcome == ProvisionOutcome.CREATED
        assert requests[0].url.params["key"] == "fb-key"
        body = json.loads(requests[0].content)
        assert body["email"] == "amina@example.com"
        assert body["displayName"] == "Amina Khan"

    def test_existing_account_is_success(self) -> None:
        client, _ = mock_client(
            lambda r: httpx.Response(400, json={"error": {"code": 400, "message": "EMAIL_EXISTS"}})
        )
        provisioner = FirebaseAuthProvisioner("fb-key", client=client)

        assert provisioner.create_user("amina@example.com", "pw1234", "") == ProvisionOutcome.EXISTS

    def test_other_error_raises(self) -> None:
        client, _ = mock_client(
            lambda r: httpx.Response(400, json={"error": {"message": "WEAK_PASSWORD : too short"}})
        )
        provisioner = FirebaseAuthProvisioner("fb-key", client=client)

        with pytest.raises(ProvisioningError, match="WEAK_PASSWORD"):
            provisioner.create_user("amina@example.com", "pw", "")

    def test_transport_error_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectTimeout("timed out", request=request)

        client, _ = mock_client(handler)
        with pytest.raises(ProvisioningError):
            FirebaseAuthProvisioner("fb-key", client=client).create_user("a@x.com", "pw1234", "")


class TestWelcomeEmail:
    """Tests for the Brevo welcome sender."""

    def test_html_contains_login_details(self) -> None:
        html = build_welcome_html("a@x.com", "Amina", ["Associates Program"], "https://portal.test", "pw1234")

        assert "Welcome to Associates Program" in html
        assert 'href="https://portal.test"' in html
        assert "a@x.com" in html
        assert "pw1234" in html

    def test_html_placeholder_and_escaping(self) -> None:
        html = build_welcome_html("a@x.com", "<b>Amina</b>", ["Tafsir & Hadith"], "https://p.test", "")

        assert PASSWORD_PLACEHOLDER in html
        assert "<b>Amina</b>" not in html
        assert "Tafsir &amp; Hadith" in html

    def test_send_success(self) -> None:
        client, requests = mock_client(lambda r: httpx.Response(201, json={"messageId": "m1"}))
        sender = BrevoWelcomeSender("brevo-key", sender_name="Institute", sender_email="no-reply@x.com", client=client)

        assert sender.send_welcome("a@x.com", "Amina", ["Associates Program", "Tafsir"], "https://p.test", "pw")
        assert requests[0].headers["api-key"] == "brevo-key"
        body = json.loads(requests[0].content)
        assert body["subject"] == "Welcome to Associates Program, Tafsir"
        assert body["to"] == [{"email": "a@x.com", "name": "Amina"}]
        assert body["sender"] == {"name": "Institute", "email": "no-reply@x.com"}

    def test_send_rejected_returns_false(self) -> None:
        client, _ = mock_client(lambda r: httpx.Response(401, json={"message": "Key not found"}))
        sender = BrevoWelcomeSender("bad-key", client=client)

        assert sender.send_welcome("a@x.com", "Amina", ["Tafsir"], "https://p.test", "pw") is False

    def test_send_transport_error_returns_false(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        client, _ = mock_client(handler)
        sender = BrevoWelcomeSender("brevo-key", client=client)

        assert sender.send_welcome("a@x.com", "Amina", ["Tafsir"], "https://p.test", "pw") is False

    def test_missing_email_returns_false(self) -> None:
        client, requests = mock_client(lambda r: httpx.Response(201))
        sender = BrevoWelcomeSender("brevo-key", client=client)

        assert sender.send_welcome("", "Amina", ["Tafsir"], "https://p.test", "pw") is False
        assert requests == []
