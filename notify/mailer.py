"""
notify/mailer.py -- Registration confirmation delivery.

Two senders share one method, send_registration_confirmation(user):

  SmtpMailer  -- delivers through the SMTP relay configured in Settings
                 (SMTP_HOST, SMTP_PORT, SMTP_USERNAME, SMTP_PASSWORD,
                 SMTP_USE_TLS, MAIL_SENDER). Credentials come only from the
                 environment.
  LogMailer   -- used when SMTP_HOST is empty; writes the confirmation to the
                 log instead of sending it.

Both are blocking. Route handlers call them through
core.timeouts.call_with_timeout so a stuck relay fails the request, not the
process. Failures surface as OSError (smtplib.SMTPException subclasses it),
which call_with_timeout maps to DependencyError.

Layer rule: may import from core/ and auth/models only.
"""

from __future__ import annotations

import logging
import smtplib
from email.message import EmailMessage
from typing import Protocol

from auth.models import User
from core.config import Settings

logger = logging.getLogger("carlot.notify")

_SUBJECT = "Welcome to CarLot"


def _confirmation_body(user: User) -> str:
    return (
        f"Hello {user.first_name},\n\n"
        f"Your CarLot account for {user.email} has been created.\n"
        "You can now sign in at /login.\n"
    )


class Mailer(Protocol):
    def send_registration_confirmation(self, user: User) -> None: ...


class LogMailer:
    def send_registration_confirmation(self, user: User) -> None:
        logger.info("Registration confirmation for %s (SMTP not configured, not sent)", user.email)


class SmtpMailer:
    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.username = username
        self.password = password
        self.use_tls = use_tls
        self.timeout = timeout

    def send_registration_confirmation(self, user: User) -> None:
        msg = EmailMessage()
        msg["Subject"] = _SUBJECT
        msg["From"] = self.sender
        msg["To"] = user.email
        msg.set_content(_confirmation_body(user))

        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)
        logger.info("Registration confirmation sent to %s", user.email)


def build_mailer(settings: Settings) -> Mailer:
    """Return an SmtpMailer when SMTP_HOST is set, otherwise a LogMailer."""
    if not settings.smtp_host:
        return LogMailer()
    return SmtpMailer(
        host=settings.smtp_host,
        port=settings.smtp_port,
        sender=settings.mail_sender,
        username=settings.smtp_username,
        password=settings.smtp_password,
        use_tls=settings.smtp_use_tls,
        timeout=settings.store_timeout_seconds,
    )
