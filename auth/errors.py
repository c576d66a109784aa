"""
auth/errors.py -- Error taxonomy raised by the auth service.

Every error carries the HTTP status and machine-readable code the API layer
renders in its ErrorResponse envelope. The core raises these unmodified and
never retries; api/main.py owns the translation to a response.

Messages are safe to show to clients: they never contain plaintext passwords,
plaintext tokens, or anything that reveals whether an email is registered.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for every user-facing auth failure."""

    status_code: int = 400
    code: str = "auth_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ValidationError(AuthError):
    """Malformed or missing input, mismatched passwords, or an inactive challenge."""

    status_code = 400
    code = "validation_error"


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"


class InvalidCredentials(AuthError):
    """Bad login. Raised identically for unknown email and wrong password."""

    status_code = 401
    code = "bad_credentials"


class AccountInactive(AuthError):
    """Correct password, but the account is suspended or soft-deleted."""

    status_code = 403
    code = "account_inactive"


class NotFound(AuthError):
    """Submitted token does not match any outstanding challenge."""

    status_code = 404
    code = "not_found"


class Expired(AuthError):
    """Token matched but its deadline has passed. Clients should re-request."""

    status_code = 410
    code = "expired"


class EmailNotVerified(AuthError):
    """Login refused; a fresh verification message was sent as a side effect."""

    status_code = 403
    code = "email_not_verified"


class EmailDeliveryError(AuthError):
    """Outbound mail failed. Any token written for that message has been cleared."""

    status_code = 500
    code = "email_delivery_failed"
