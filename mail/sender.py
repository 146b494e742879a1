"""
mail/sender.py -- Outbound mail collaborator.

MailSender is the interface the verification and reset flows depend on:
create_message() builds a message, send() hands it off synchronously. Any
transport failure surfaces as MailDeliveryError so flow callers can tell a
delivery problem apart from a validation failure.

Implementations:
  SmtpMailSender    -- smtplib, STARTTLS or implicit TLS.
  LoggingMailSender -- dev mode. Logs the subject and a redacted recipient
                       instead of sending. Selected when SMTP is not configured.

Message bodies are never logged: they contain one-time codes.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from dataclasses import dataclass
from email.message import EmailMessage
from enum import Enum
from typing import Protocol

from auth.errors import MailDeliveryError
from core.config import Settings

logger = logging.getLogger("authcore.mail")


class ContentType(str, Enum):
    TEXT = "text/plain"
    HTML = "text/html"


@dataclass(frozen=True)
class MailMessage:
    sender: str
    to: str
    subject: str
    body: str
    content_type: ContentType = ContentType.HTML


class MailSender(Protocol):
    def create_message(
        self, to: str, subject: str, body: str, content_type: ContentType = ContentType.HTML
    ) -> MailMessage: ...

    def send(self, message: MailMessage) -> None: ...


def redact_email(email: str) -> str:
    """alice@example.com -> al***@example.com, for logs."""
    if "@" not in email:
        return "redacted"
    local, domain = email.split("@", 1)
    return f"{local[:2]}***@{domain}"


class SmtpMailSender:
    def __init__(
        self,
        host: str,
        port: int = 587,
        sender_email: str = "",
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 30.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender_email = sender_email or user
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def create_message(
        self, to: str, subject: str, body: str, content_type: ContentType = ContentType.HTML
    ) -> MailMessage:
        return MailMessage(sender=self.sender_email, to=to, subject=subject, body=body, content_type=content_type)

    def send(self, message: MailMessage) -> None:
        mime = EmailMessage()
        mime["From"] = message.sender
        mime["To"] = message.to
        mime["Subject"] = message.subject
        subtype = "html" if message.content_type == ContentType.HTML else "plain"
        mime.set_content(message.body, subtype=subtype)

        context = ssl.create_default_context()
        try:
            if self.use_tls:
                with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                    server.starttls(context=context)
                    self._login(server)
                    server.send_message(mime)
            else:
                with smtplib.SMTP_SSL(self.host, self.port, context=context, timeout=self.timeout) as server:
                    self._login(server)
                    server.send_message(mime)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error(
                "Mail to %s failed via %s:%d: %s",
                redact_email(message.to),
                self.host,
                self.port,
                exc,
            )
            raise MailDeliveryError() from exc
        logger.info("Mail sent to %s (%s)", redact_email(message.to), message.subject)

    def _login(self, server: smtplib.SMTP) -> None:
        if self.user and self.password:
            server.login(self.user, self.password)


class LoggingMailSender:
    """Dev-mode sender: records the hand-off in the log only.

    The body is never logged or kept; it carries a live one-time code.
    """

    def __init__(self, sender_email: str = "noreply@localhost") -> None:
        self.sender_email = sender_email

    def create_message(
        self, to: str, subject: str, body: str, content_type: ContentType = ContentType.HTML
    ) -> MailMessage:
        return MailMessage(sender=self.sender_email, to=to, subject=subject, body=body, content_type=content_type)

    def send(self, message: MailMessage) -> None:
        logger.info("SMTP not configured; mail to %s not sent (%s)", redact_email(message.to), message.subject)


def build_mail_sender(settings: Settings) -> MailSender:
    """SMTP when host and sender are configured, logging sender otherwise."""
    if settings.mail_configured:
        return SmtpMailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            sender_email=settings.sender_email,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
        )
    logger.warning("SMTP_HOST / SENDER_EMAIL not set -- outbound mail will only be logged")
    return LoggingMailSender(sender_email=settings.sender_email or "noreply@localhost")
