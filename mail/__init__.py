"""mail/ -- Outbound mail transports behind the Notifier interface.

Layer rule: mail/ imports only stdlib and core/. auth/ receives a Notifier
instance; it never imports a concrete transport.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from mail.base import MailMessage, Notifier, NotifierError
from mail.console import ConsoleNotifier
from mail.smtp import SmtpNotifier

if TYPE_CHECKING:
    from core.config import Settings

__all__ = ["ConsoleNotifier", "MailMessage", "Notifier", "NotifierError", "SmtpNotifier", "build_notifier"]


def build_notifier(settings: Settings) -> Notifier:
    """Pick the transport named by MAIL_DRIVER. Called once at startup."""
    if settings.mail_driver == "smtp":
        return SmtpNotifier.from_settings(settings)
    return ConsoleNotifier()
