"""Delivery of one-time codes by email, in a provider-agnostic way."""
from __future__ import annotations

import json
import logging
import os
import smtplib
from email.message import EmailMessage

import requests
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)

SUBJECTS = {
    "login": "Your Secure FMS login code",
    "password-reset": "Your Secure FMS password reset code",
}


def _email_from() -> str:
    return os.getenv("EMAIL_FROM", "noreply@securefms.com")


def _provider() -> str:
    return os.getenv("EMAIL_PROVIDER", "smtp").lower()


def _validate_provider(provider: str) -> None:
    if provider == "smtp":
        for key in ("SMTP_HOST", "SMTP_USERNAME", "SMTP_PASSWORD"):
            if not os.getenv(key):
                raise RuntimeError(
                    f"{key} is required for SMTP email delivery")
    elif provider == "sendgrid":
        if not os.getenv("SENDGRID_API_KEY"):
            raise RuntimeError(
                "SENDGRID_API_KEY is required for SendGrid delivery")
    elif provider == "console":
        # no configuration required
        pass
    else:
        raise RuntimeError(f"Unsupported EMAIL_PROVIDER '{provider}'")


def _send_via_smtp(subject: str, to_email: str, body: str) -> None:
    host = os.environ["SMTP_HOST"]
    username = os.environ["SMTP_USERNAME"]
    password = os.environ["SMTP_PASSWORD"]
    port = int(os.getenv("SMTP_PORT", "587"))

    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = _email_from()
    msg["To"] = to_email
    msg.set_content(body)

    if port == 465:
        with smtplib.SMTP_SSL(host, port, timeout=10) as smtp:
            smtp.login(username, password)
            smtp.send_message(msg)
    else:
        with smtplib.SMTP(host, port, timeout=10) as smtp:
            smtp.starttls()
            smtp.login(username, password)
            smtp.send_message(msg)


def _send_via_sendgrid(subject: str, to_email: str, body: str) -> None:
    api_key = os.environ["SENDGRID_API_KEY"]
    payload = {
        "personalizations": [{"to": [{"email": to_email}]}],
        "from": {"email": _email_from()},
        "subject": subject,
        "content": [{"type": "text/plain", "value": body}],
    }
    response = requests.post(
        "https://api.sendgrid.com/v3/mail/send",
        headers={
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
        },
        data=json.dumps(payload),
        timeout=10,
    )
    if response.status_code >= 400:
        raise RuntimeError(
            f"SendGrid failed with status {response.status_code}: {response.text}")


def send_email(subject: str, to_email: str, body: str) -> None:
    provider = _provider()
    _validate_provider(provider)
    if provider == "smtp":
        _send_via_smtp(subject, to_email, body)
    elif provider == "sendgrid":
        _send_via_sendgrid(subject, to_email, body)
    else:
        logger.info("Email to %s: %s", to_email, body)


def otp_body(username: str, code: str, purpose: str, ttl_seconds: int) -> str:
    action = "reset your password" if purpose == "password-reset" else "sign in to your account"
    return (
        f"Hello {username or 'User'}!\n\n"
        f"Use the code below to {action}:\n\n"
        f"    {code}\n\n"
        f"This code will expire in {ttl_seconds // 60} minutes.\n"
        "If you didn't request this code, please ignore this email."
    )


class EmailNotifier:
    """Notifier collaborator for OTPManager; raises on delivery failure."""

    def send_code(self, user, code: str, purpose: str, ttl_seconds: int) -> None:
        subject = SUBJECTS.get(purpose, "Your Secure FMS code")
        send_email(subject, user.email, otp_body(user.username, code, purpose, ttl_seconds))
        logger.info("Sent %s code to user %s", purpose, user.id)
