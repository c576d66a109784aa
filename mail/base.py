"""
mail/base.py -- Notifier interface shared by every mail transport.

The auth service depends only on Notifier.send(). Which transport sits behind
it (console for development, SMTP for real delivery) is decided once at
startup by mail.build_notifier().

Delivery is binary: send() either returns normally or raises NotifierError.
Transports wrap every lower-level failure (connection refused, timeout,
authentication, recipient rejected) in NotifierError so callers handle one
exception type and never see partial state.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass


class NotifierError(Exception):
    """The message was not delivered."""


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    text: str
    html: str | None = None

    def __repr__(self) -> str:
        # Bodies carry one-time secrets; keep them out of reprs and tracebacks.
        return f"MailMessage(to={self.to!r}, subject={self.subject!r})"


class Notifier(ABC):
    """Outbound mail channel."""

    @abstractmethod
    def send(self, message: MailMessage) -> None:
        """Deliver message or raise NotifierError."""
