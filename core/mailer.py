"""
core/mailer.py -- Outbound mail contract and its two implementations.

The credential lifecycle only needs "send a message to an address with a link
containing a token". MailSender captures that contract; SmtpMailSender talks to
a real relay and LogMailSender writes a redacted line to the log for local dev.

send() never raises. A delivery failure is logged and reported as False -- the
token that the message carries has already been persisted, and the caller
decides nothing differently on failure.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from typing import Protocol

from core.config import Settings

logger = logging.getLogger("tasknest.mail")


class MailSender(Protocol):
    def send(self, to_address: str, subject: str, body: str) -> bool: ...


def redact_email(address: str) -> str:
    """Mask the local part of an address so logs carry no full PII."""
    if "@" not in address:
        return "redacted"
    local, domain = address.split("@", 1)
    return f"{local[:2]}***@{domain}"


class LogMailSender:
    """Dev-mode sender: logs the subject and recipient, never the body.

    The body contains raw tokens, so it is kept out of the log even in dev.
    """

    def send(self, to_address: str, subject: str, body: str) -> bool:
        logger.info("Mail (log-only) to=%s subject=%r", redact_email(to_address), subject)
        return True


class SmtpMailSender:
    """SMTP relay sender with optional STARTTLS."""

    def __init__(
        self,
        host: str,
        port: int = 587,
        user: str = "",
        password: str = "",
        use_tls: bool = True,
        from_address: str = "",
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.user = user
        self.password = password
        self.use_tls = use_tls
        self.from_address = from_address or user
        self.timeout = timeout

    def send(self, to_address: str, subject: str, body: str) -> bool:
        msg = EmailMessage()
        msg["Subject"] = subject
        msg["From"] = self.from_address
        msg["To"] = to_address
        msg.set_content(body)
        try:
            with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as server:
                if self.use_tls:
                    server.starttls(context=ssl.create_default_context())
                if self.user and self.password:
                    server.login(self.user, self.password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError):
            logger.exception("Mail delivery failed to=%s subject=%r", redact_email(to_address), subject)
            return False
        logger.info("Mail sent to=%s subject=%r", redact_email(to_address), subject)
        return True


def build_mail_sender(settings: Settings) -> MailSender:
    """Return the SMTP sender when a relay is configured, else the log-only sender."""
    if settings.smtp_host:
        return SmtpMailSender(
            host=settings.smtp_host,
            port=settings.smtp_port,
            user=settings.smtp_user,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            from_address=settings.mail_from,
        )
    logger.warning("SMTP_HOST not set -- outbound mail is logged, not delivered")
    return LogMailSender()
