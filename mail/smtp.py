"""
mail/smtp.py -- SMTP transport built on the standard library's smtplib.

One connection per message: the service sends at most one mail per request,
so pooling buys nothing and a fresh connection never carries state from a
previous failure.

Connection modes:
  secure=True   -- implicit TLS via SMTP_SSL (usually port 465).
  secure=False  -- plain connect, then STARTTLS when the server offers it.

Every socket operation is bounded by timeout_seconds. Any smtplib or socket
error, including a timeout, surfaces as NotifierError.
"""

from __future__ import annotations

import logging
import smtplib
import ssl
from email.message import EmailMessage
from email.utils import formataddr
from typing import TYPE_CHECKING

from mail.base import MailMessage, Notifier, NotifierError

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("idgate.mail")


class SmtpNotifier(Notifier):
    def __init__(
        self,
        host: str,
        port: int = 587,
        *,
        sender_email: str,
        sender_name: str = "",
        username: str = "",
        password: str = "",
        secure: bool = False,
        timeout_seconds: float = 10.0,
    ) -> None:
        if not host or not sender_email:
            raise ValueError("SmtpNotifier requires a host and a sender address")
        self.host = host
        self.port = port
        self.sender_email = sender_email
        self.sender_name = sender_name
        self.username = username
        self._password = password
        self.secure = secure
        self.timeout_seconds = timeout_seconds

    @classmethod
    def from_settings(cls, settings: Settings) -> SmtpNotifier:
        return cls(
            settings.smtp_host,
            settings.smtp_port,
            sender_email=settings.smtp_email,
            sender_name=settings.smtp_name,
            username=settings.smtp_user or settings.smtp_email,
            password=settings.smtp_pass,
            secure=settings.smtp_secure,
            timeout_seconds=settings.smtp_timeout_seconds,
        )

    def _build(self, message: MailMessage) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = message.subject
        msg["From"] = formataddr((self.sender_name, self.sender_email)) if self.sender_name else self.sender_email
        msg["To"] = message.to
        msg.set_content(message.text)
        if message.html:
            msg.add_alternative(message.html, subtype="html")
        return msg

    def _connect(self) -> smtplib.SMTP:
        context = ssl.create_default_context()
        if self.secure:
            return smtplib.SMTP_SSL(self.host, self.port, timeout=self.timeout_seconds, context=context)
        server = smtplib.SMTP(self.host, self.port, timeout=self.timeout_seconds)
        try:
            server.ehlo()
            if server.has_extn("starttls"):
                server.starttls(context=context)
                server.ehlo()
        except (smtplib.SMTPException, OSError):
            server.close()
            raise
        return server

    def send(self, message: MailMessage) -> None:
        try:
            msg = self._build(message)
            with self._connect() as server:
                if self.username and self._password:
                    server.login(self.username, self._password)
                server.send_message(msg)
        except (smtplib.SMTPException, OSError, ValueError) as exc:
            # ValueError covers headers the email package refuses to build or encode.
            logger.warning("SMTP delivery failed host=%s to=%s: %s", self.host, message.to, exc)
            raise NotifierError(f"SMTP delivery to {message.to} failed") from exc
        logger.info("SMTP mail sent to=%s subject=%r", message.to, message.subject)
