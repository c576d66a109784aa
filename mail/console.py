"""
mail/console.py -- Development transport that writes messages to a stream.

Nothing leaves the machine: the full message, including the one-time code or
link, is printed so a developer can complete the flow locally. The body goes
to the stream only, never to the logging system, so log shipping never sees
a plaintext token.
"""

from __future__ import annotations

import logging
import sys
from typing import TextIO

from mail.base import MailMessage, Notifier, NotifierError

logger = logging.getLogger("idgate.mail")


class ConsoleNotifier(Notifier):
    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    def send(self, message: MailMessage) -> None:
        stream = self._stream or sys.stdout
        try:
            stream.write(
                "[MAIL] ----------------------------------------\n"
                f"[MAIL] To: {message.to}\n"
                f"[MAIL] Subject: {message.subject}\n"
                f"[MAIL] Text: {message.text or '-'}\n"
                f"[MAIL] HTML: {message.html or '-'}\n"
            )
            stream.flush()
        except (OSError, ValueError) as exc:
            raise NotifierError(f"console transport failed: {exc}") from exc
        logger.info("Console mail written to=%s subject=%r", message.to, message.subject)
