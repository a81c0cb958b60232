"""
auth/mailer.py -- Notification dispatch for account and recovery events.

Two events leave the core:
  ResetPasswordRequested -- carries the plaintext one-time recovery password
      and the token id. This is the only place the plaintext travels; it is
      never persisted.
  UserCreated -- carries the generated initial password of a new account.

Delivery is fire-and-forget from the core's perspective. MailerService renders
a Jinja2 text template and hands the SMTP send to a small thread pool; a
delivery failure is logged and never propagates back into the request that
created the token or the account.

LoggingNotifier is the fallback when SMTP_HOST is not configured. It logs the
event without any secret so local development works without a mail server.

Layer rule: no imports from api/ or admin/.
"""

from __future__ import annotations

import logging
import smtplib
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from email.message import EmailMessage
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, FileSystemLoader, StrictUndefined

logger = logging.getLogger("passport.mailer")

_TEMPLATE_DIR = Path(__file__).parent / "templates" / "mail"


@dataclass(frozen=True)
class ResetPasswordRequested:
    name: str
    username: str
    email: str
    requested_at: datetime
    expires_at: datetime
    password: str
    token: str


@dataclass(frozen=True)
class UserCreated:
    id: int
    name: str
    username: str
    email: str
    created_at: str
    password: str


class Notifier(Protocol):
    def reset_password_requested(self, event: ResetPasswordRequested) -> None: ...

    def user_created(self, event: UserCreated) -> None: ...


class LoggingNotifier:
    """Notifier that only records that an event happened."""

    def reset_password_requested(self, event: ResetPasswordRequested) -> None:
        logger.info("Reset password requested (mail disabled) username=%s token=%s", event.username, event.token)

    def user_created(self, event: UserCreated) -> None:
        logger.info("User created (mail disabled) username=%s", event.username)


class MailerService:
    """Send notification e-mails over SMTP without blocking the caller.

    Usage:
        mailer = MailerService.from_settings(get_settings())
        mailer.user_created(UserCreated(...))
        mailer.close()
    """

    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        use_tls: bool = True,
        sender: str = "passport@localhost",
        base_url: str = "http://localhost:8080",
        max_workers: int = 2,
    ) -> None:
        self._host = host
        self._port = port
        self._username = username
        self._password = password
        self._use_tls = use_tls
        self._sender = sender
        self._base_url = base_url.rstrip("/")
        self._templates = Environment(
            loader=FileSystemLoader(str(_TEMPLATE_DIR)),
            undefined=StrictUndefined,
            autoescape=False,
            keep_trailing_newline=True,
        )
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="passport-mailer")

    @classmethod
    def from_settings(cls, settings) -> MailerService:
        return cls(
            host=settings.smtp_host,
            port=settings.smtp_port,
            username=settings.smtp_username,
            password=settings.smtp_password,
            use_tls=settings.smtp_use_tls,
            sender=settings.mail_from,
            base_url=settings.base_url,
        )

    def reset_password_requested(self, event: ResetPasswordRequested) -> Future:
        logger.info("Sending reset password email username=%s", event.username)
        message = self.render("reset_password.txt", event, subject="[PASSPORT] Password reset requested")
        return self._submit(message, event.email)

    def user_created(self, event: UserCreated) -> Future:
        logger.info("Sending account created email username=%s", event.username)
        message = self.render("user_created.txt", event, subject="[PASSPORT] Account created")
        return self._submit(message, event.email)

    def render(self, template_name: str, event, subject: str) -> EmailMessage:
        body = self._templates.get_template(template_name).render(event=event, base_url=self._base_url)
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = self._sender
        message["To"] = event.email
        message.set_content(body)
        return message

    def _submit(self, message: EmailMessage, recipient: str) -> Future:
        future = self._executor.submit(self._send, message)
        future.add_done_callback(lambda f: self._log_outcome(f, recipient))
        return future

    def _send(self, message: EmailMessage) -> None:
        with smtplib.SMTP(self._host, self._port, timeout=10) as server:
            if self._use_tls:
                server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.send_message(message)

    @staticmethod
    def _log_outcome(future: Future, recipient: str) -> None:
        exc = future.exception()
        if exc is None:
            logger.info("Email sent to %s", recipient)
        else:
            logger.error("Failed to send email to %s: %s", recipient, exc)

    def close(self) -> None:
        self._executor.shutdown(wait=True)


def build_notifier(settings) -> Notifier:
    """Return a MailerService when SMTP is configured, else a LoggingNotifier."""
    if settings.smtp_host:
        return MailerService.from_settings(settings)
    return LoggingNotifier()
