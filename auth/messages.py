"""
auth/messages.py -- Outbound mail content for the verification and reset flows.

Token mode sends a clickable link that carries the plaintext token as a query
parameter; OTP mode sends the bare 6-digit code. The plaintext appears in the
message body and nowhere else.
"""

from __future__ import annotations

import html
from urllib.parse import urlencode

from auth.challenges import TOKEN_MODE, IssuedToken
from mail.base import MailMessage

VERIFY_EMAIL_PATH = "/verify-email"
RESET_PASSWORD_PATH = "/reset-password"


def _link(app_url: str, path: str, token: str) -> str:
    return f"{app_url.rstrip('/')}{path}?{urlencode({'token': token})}"


def _html_link(url: str, label: str) -> str:
    href = html.escape(url, quote=True)
    return f'<p><a href="{href}">{html.escape(label)}</a></p><p>Or open this link: {html.escape(url)}</p>'


def verification_message(to: str, issued: IssuedToken, app_url: str) -> MailMessage:
    if issued.mode == TOKEN_MODE:
        url = _link(app_url, VERIFY_EMAIL_PATH, issued.plain)
        return MailMessage(
            to=to,
            subject="Verify your email",
            text=f"Click the link to verify: {url}",
            html=_html_link(url, "Verify your email"),
        )
    return MailMessage(
        to=to,
        subject="Verify your email",
        text=f"Your verification code is {issued.plain}",
    )


def password_reset_message(to: str, issued: IssuedToken, app_url: str) -> MailMessage:
    if issued.mode == TOKEN_MODE:
        url = _link(app_url, RESET_PASSWORD_PATH, issued.plain)
        return MailMessage(
            to=to,
            subject="Reset your password",
            text=f"Click to verify reset request: {url}",
            html=_html_link(url, "Reset your password"),
        )
    return MailMessage(
        to=to,
        subject="Reset your password",
        text=f"Your password reset code is: {issued.plain}",
    )
