"""
tests/test_mail.py -- Mail senders, sender selection and template rendering.

SMTP is exercised against a patched smtplib.SMTP so no network is touched.
"""

from __future__ import annotations

import smtplib
from unittest.mock import MagicMock, patch

import pytest

from auth.errors import MailDeliveryError
from core.config import Settings
from mail.sender import (
    ContentType,
    LoggingMailSender,
    SmtpMailSender,
    build_mail_sender,
    redact_email,
)
from mail.templates import EmailTemplates

SECRET = "test-secret-key-that-is-at-least-32-characters"


def test_redact_email() -> None:
    assert redact_email("alice@example.com") == "al***@example.com"
    assert redact_email("garbage") == "redacted"


def test_build_mail_sender_without_smtp_logs() -> None:
    sender = build_mail_sender(Settings(secret_key=SECRET, smtp_host="", sender_email=""))
    assert isinstance(sender, LoggingMailSender)


def test_build_mail_sender_with_smtp() -> None:
    sender = build_mail_sender(
        Settings(secret_key=SECRET, smtp_host="smtp.example.com", sender_email="noreply@example.com", smtp_port=2525)
    )
    assert isinstance(sender, SmtpMailSender)
    assert sender.port == 2525


def test_logging_sender_logs_redacted_recipient_only(caplog) -> None:
    sender = LoggingMailSender("noreply@example.com")
    message = sender.create_message("alice@example.com", "Email Verification", "code 482913")
    with caplog.at_level("INFO", logger="authcore.mail"):
        sender.send(message)
    records = [r for r in caplog.records if r.name == "authcore.mail"]
    assert len(records) == 1
    assert "al***@example.com" in records[0].getMessage()
    assert "Email Verification" in records[0].getMessage()
    assert not hasattr(sender, "outbox")
    assert "482913" not in caplog.text
    assert "alice@example.com" not in caplog.text


def test_smtp_sender_sends_over_starttls() -> None:
    sender = SmtpMailSender("smtp.example.com", 587, "noreply@example.com", user="u", password="p")
    message = sender.create_message("alice@example.com", "Subject", "<p>hi</p>", ContentType.HTML)
    server = MagicMock()
    with patch("mail.sender.smtplib.SMTP") as smtp_cls:
        smtp_cls.return_value.__enter__.return_value = server
        sender.send(message)
    server.starttls.assert_called_once()
    server.login.assert_called_once_with("u", "p")
    sent = server.send_message.call_args.args[0]
    assert sent["To"] == "alice@example.com"
    assert sent["From"] == "noreply@example.com"
    assert sent.get_content_type() == "text/html"


def test_smtp_failure_raises_mail_delivery_error() -> None:
    sender = SmtpMailSender("smtp.example.com", 587, "noreply@example.com")
    message = sender.create_message("alice@example.com", "Subject", "body", ContentType.TEXT)
    with patch("mail.sender.smtplib.SMTP", side_effect=smtplib.SMTPConnectError(421, "busy")):
        with pytest.raises(MailDeliveryError):
            sender.send(message)


def test_templates_render_both_messages() -> None:
    templates = EmailTemplates(company_name="Acme")
    verification = templates.verification("Alice", "482913")
    reset = templates.password_reset("Alice", "105772", ttl_minutes=5)
    assert "482913" in verification and "Acme" in verification
    assert "105772" in reset and "5 minutes" in reset
