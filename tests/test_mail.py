"""Unit tests for mail/ -- console and SMTP transports.

Covers:
- ConsoleNotifier writes the full message to its stream, logs only metadata
- ConsoleNotifier turns a broken stream into NotifierError
- SmtpNotifier builds a multipart message and uses STARTTLS when offered
- SmtpNotifier uses implicit TLS when secure=True
- SmtpNotifier wraps smtplib, socket and header-building errors in NotifierError
- build_notifier() picks the transport named by MAIL_DRIVER
- message builders: OTP text vs. token link with HTML alternative
"""

from __future__ import annotations

import io
import logging
import smtplib
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from auth.challenges import IssuedToken, hash_token
from auth.messages import password_reset_message, verification_message
from core.config import Settings
from mail import ConsoleNotifier, MailMessage, NotifierError, SmtpNotifier, build_notifier

SECRET = "x" * 40
MESSAGE = MailMessage(to="ada@example.com", subject="Verify your email", text="Your verification code is 123456")


def _issued(plain: str, mode: str) -> IssuedToken:
    return IssuedToken(
        plain=plain,
        hashed=hash_token(plain),
        expires_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        mode=mode,
    )


class TestConsoleNotifier:
    def test_writes_message_to_stream(self, caplog) -> None:
        stream = io.StringIO()
        with caplog.at_level(logging.INFO, logger="idgate.mail"):
            ConsoleNotifier(stream).send(MESSAGE)
        out = stream.getvalue()
        assert "[MAIL] To: ada@example.com" in out
        assert "123456" in out
        # Log line carries recipient and subject, never the body.
        assert "ada@example.com" in caplog.text
        assert "123456" not in caplog.text

    def test_closed_stream_raises(self) -> None:
        stream = io.StringIO()
        stream.close()
        with pytest.raises(NotifierError):
            ConsoleNotifier(stream).send(MESSAGE)

    def test_repr_hides_body(self) -> None:
        assert "123456" not in repr(MESSAGE)


class TestSmtpNotifier:
    def _notifier(self, **kwargs) -> SmtpNotifier:
        defaults = {"sender_email": "no-reply@example.com", "sender_name": "idgate", "username": "u", "password": "p"}
        defaults.update(kwargs)
        return SmtpNotifier("smtp.example.com", 587, **defaults)

    def test_starttls_send(self) -> None:
        with patch("mail.smtp.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value
            server.has_extn.return_value = True
            server.__enter__.return_value = server

            self._notifier().send(MESSAGE)

        smtp_cls.assert_called_once_with("smtp.example.com", 587, timeout=10.0)
        server.starttls.assert_called_once()
        server.login.assert_called_once_with("u", "p")
        sent = server.send_message.call_args.args[0]
        assert sent["To"] == "ada@example.com"
        assert sent["Subject"] == "Verify your email"
        assert "no-reply@example.com" in sent["From"]

    def test_implicit_tls(self) -> None:
        with patch("mail.smtp.smtplib.SMTP_SSL") as ssl_cls, patch("mail.smtp.smtplib.SMTP") as smtp_cls:
            server = ssl_cls.return_value
            server.__enter__.return_value = server
            self._notifier(secure=True).send(MESSAGE)
        ssl_cls.assert_called_once()
        smtp_cls.assert_not_called()
        server.send_message.assert_called_once()

    def test_no_login_without_credentials(self) -> None:
        with patch("mail.smtp.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value
            server.has_extn.return_value = False
            server.__enter__.return_value = server
            self._notifier(username="", password="").send(MESSAGE)
        server.starttls.assert_not_called()
        server.login.assert_not_called()

    def test_smtp_error_wrapped(self) -> None:
        with patch("mail.smtp.smtplib.SMTP") as smtp_cls:
            server = smtp_cls.return_value
            server.has_extn.return_value = True
            server.__enter__.return_value = server
            server.login.side_effect = smtplib.SMTPAuthenticationError(535, b"bad auth")
            with pytest.raises(NotifierError):
                self._notifier().send(MESSAGE)

    def test_connection_refused_wrapped(self) -> None:
        with patch("mail.smtp.smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
            with pytest.raises(NotifierError):
                self._notifier().send(MESSAGE)

    def test_unbuildable_header_wrapped(self) -> None:
        with patch("mail.smtp.smtplib.SMTP") as smtp_cls:
            with pytest.raises(NotifierError):
                self._notifier().send(MailMessage(to="ada@example.com", subject="a\r\nBcc: x@example.com", text="t"))
        smtp_cls.assert_not_called()

    def test_html_alternative(self) -> None:
        notifier = self._notifier()
        built = notifier._build(
            MailMessage(to="ada@example.com", subject="s", text="plain", html="<p>rich</p>")
        )
        assert built.is_multipart()
        assert {part.get_content_type() for part in built.iter_parts()} == {"text/plain", "text/html"}

    def test_requires_host_and_sender(self) -> None:
        with pytest.raises(ValueError):
            SmtpNotifier("", sender_email="no-reply@example.com")
        with pytest.raises(ValueError):
            SmtpNotifier("smtp.example.com", sender_email="")


class TestBuildNotifier:
    def test_console_default(self) -> None:
        assert isinstance(build_notifier(Settings(secret_key=SECRET)), ConsoleNotifier)

    def test_smtp(self) -> None:
        settings = Settings(
            secret_key=SECRET,
            mail_driver="smtp",
            smtp_host="smtp.example.com",
            smtp_port=465,
            smtp_secure=True,
            smtp_email="no-reply@example.com",
            smtp_pass="p",
        )
        notifier = build_notifier(settings)
        assert isinstance(notifier, SmtpNotifier)
        assert notifier.port == 465
        assert notifier.secure is True
        # SMTP_USER falls back to the sender address.
        assert notifier.username == "no-reply@example.com"


class TestMessages:
    def test_verification_otp(self) -> None:
        message = verification_message("ada@example.com", _issued("042042", "otp"), "https://app.example.test")
        assert message.text == "Your verification code is 042042"
        assert message.html is None

    def test_verification_link(self) -> None:
        token = "ab" * 32
        message = verification_message("ada@example.com", _issued(token, "token"), "https://app.example.test/")
        assert message.text == f"Click the link to verify: https://app.example.test/verify-email?token={token}"
        assert "href=" in message.html

    def test_reset_otp_and_link(self) -> None:
        otp = password_reset_message("ada@example.com", _issued("123456", "otp"), "https://app.example.test")
        assert otp.text == "Your password reset code is: 123456"
        token = "cd" * 32
        link = password_reset_message("ada@example.com", _issued(token, "token"), "https://app.example.test")
        assert link.text.endswith(f"/reset-password?token={token}")
        assert link.subject == "Reset your password"
