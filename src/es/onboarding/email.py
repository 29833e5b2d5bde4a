"""Welcome email for newly enrolled students, sent through the Brevo API."""

from __future__ import annotations

import logging
from html import escape
from typing import Any, Protocol

import httpx

logger = logging.getLogger(__name__)

BREVO_API_URL = "https://api.brevo.com/v3/smtp/email"
DEFAULT_SENDER_NAME = "Tanwir Institute"
DEFAULT_SENDER_EMAIL = "noreply@tanwirinstitute.org"
PASSWORD_PLACEHOLDER = "Your custom password"


class WelcomeNotifier(Protocol):
    """Anything that can deliver a welcome message. Never raises."""

    def send_welcome(
        self,
        email: str,
        name: str,
        course_names: list[str],
        portal_url: str,
        password: str,
    ) -> bool: ...


def build_welcome_html(
    email: str,
    name: str,
    course_names: list[str],
    portal_url: str,
    password: str,
) -> str:
    """HTML body listing the courses and portal login details."""
    courses = escape(", ".join(course_names))
    url = escape(portal_url, quote=True)
    return (
        f"<h1>Welcome to {courses}!</h1>"
        f"<p>Hello {escape(name or email)},</p>"
        f"<p>Thank you for enrolling in {courses}. We're excited to have you join us!</p>"
        "<p>Here are your login details for the student portal:</p>"
        "<ul>"
        f'<li><strong>Portal URL:</strong> <a href="{url}">{url}</a></li>'
        f"<li><strong>Username:</strong> {escape(email)}</li>"
        f"<li><strong>Password:</strong> {escape(password or PASSWORD_PLACEHOLDER)}</li>"
        "</ul>"
        "<p>If you have any questions, please don't hesitate to contact us.</p>"
    )


class BrevoWelcomeSender:
    """Transactional welcome email through Brevo."""

    def __init__(
        self,
        api_key: str,
        sender_name: str = DEFAULT_SENDER_NAME,
        sender_email: str = DEFAULT_SENDER_EMAIL,
        client: httpx.Client | None = None,
        api_url: str = BREVO_API_URL,
    ) -> None:
        self._api_key = api_key
        self._sender = {"name": sender_name, "email": sender_email}
        self._api_url = api_url
        self.client = client or httpx.Client(timeout=30.0)

    def build_message(
        self,
        email: str,
        name: str,
        course_names: list[str],
        portal_url: str,
        password: str,
    ) -> dict[str, Any]:
        subject_courses = ", ".join(course_names)
        return {
            "sender": self._sender,
            "to": [{"email": email, "name": name or email}],
            "subject": f"Welcome to {subject_courses}",
            "htmlContent": build_welcome_html(email, name, course_names, portal_url, password),
        }

    def send_welcome(
        self,
        email: str,
        name: str,
        course_names: list[str],
        portal_url: str,
        password: str,
    ) -> bool:
        """Send the welcome email; returns False on any failure."""
        if not email:
            logger.warning("Cannot send welcome email: missing email address")
            return False

        message = self.build_message(email, name, course_names, portal_url, password)
        headers = {
            "accept": "application/json",
            "api-key": self._api_key,
            "content-type": "application/json",
        }
        try:
            response = self.client.post(self._api_url, headers=headers, json=message)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            logger.error(
                "Welcome email to %s rejected: status=%s body=%s",
                email,
                e.response.status_code,
                e.response.text[:500],
            )
            return False
        except httpx.HTTPError as e:
            logger.error("Welcome email to %s failed: %s", email, e)
            return False

        logger.info("Welcome email sent to %s for courses: %s", email, ", ".join(course_names))
        return True
