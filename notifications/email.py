"""
Email dispatch for session notices.

The session authority only hands a reset token to an ``EmailDispatcher``;
it never renders or delivers mail itself.  Two dispatchers ship here:

  • ``LogEmailDispatcher`` — writes the reset link to the log (development).
  • ``SmtpEmailDispatcher`` — plain SMTP; the blocking ``smtplib`` calls are
    offloaded with ``asyncio.to_thread()`` so they never block the event loop.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from config.settings import config

logger = logging.getLogger(__name__)


def reset_link(token: str, base_url: Optional[str] = None) -> str:
    base = (base_url or config.frontend_url).rstrip("/")
    return f"{base}/reset-password?token={token}"


class EmailDispatcher:
    """Interface consumed by the session authority."""

    async def send_password_reset_notice(self, email: str, reset_token: str) -> None:
        raise NotImplementedError


class LogEmailDispatcher(EmailDispatcher):
    async def send_password_reset_notice(self, email: str, reset_token: str) -> None:
        logger.info("Password reset requested for %s — %s", email, reset_link(reset_token))


class SmtpEmailDispatcher(EmailDispatcher):
    def __init__(
        self,
        host: str,
        port: int = 587,
        username: str = "",
        password: str = "",
        sender: str = "noreply@localhost",
        use_tls: bool = True,
        timeout: float = 10.0,
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.use_tls = use_tls
        self.timeout = timeout

    async def send_password_reset_notice(self, email: str, reset_token: str) -> None:
        link = reset_link(reset_token)
        body = (
            "We received a request to reset your password.\n\n"
            f"Use the link below within the next hour:\n{link}\n\n"
            "If you did not request this, you can ignore this email."
        )
        mime = _build_mime_message(self.sender, email, "Reset your password", body)
        await asyncio.to_thread(self._send, email, mime)
        logger.info("Password reset email sent to %s", email)

    def _send(self, to: str, mime: MIMEMultipart) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            if self.use_tls:
                smtp.starttls()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.sendmail(self.sender, [to], mime.as_string())


def _build_mime_message(sender: str, to: str, subject: str, body: str) -> MIMEMultipart:
    mime = MIMEMultipart()
    mime["to"] = to
    mime["from"] = sender
    mime["subject"] = subject
    mime.attach(MIMEText(body, "plain"))
    return mime


_dispatcher: Optional[EmailDispatcher] = None


def get_email_dispatcher() -> EmailDispatcher:
    """FastAPI dependency — SMTP when ``SMTP_HOST`` is set, log-only otherwise."""
    global _dispatcher
    if _dispatcher is None:
        if config.smtp_host:
            _dispatcher = SmtpEmailDispatcher(
                host=config.smtp_host,
                port=config.smtp_port,
                username=config.smtp_user,
                password=config.smtp_password,
                sender=config.smtp_from,
                use_tls=config.smtp_use_tls,
            )
        else:
            _dispatcher = LogEmailDispatcher()
    return _dispatcher
