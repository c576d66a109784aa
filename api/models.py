"""
API request and response models for idgate REST endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Shape checks (types, lengths, email syntax) live here; every semantic rule
(passwords match, token blank, expiry) is enforced again by auth.service so
non-HTTP callers get the same guarantees. Passwords are never whitespace-
stripped -- a trailing space is part of the password.
"""

from datetime import datetime
from typing import Annotated, Optional

from email_validator import validate_email
from pydantic import AfterValidator, BaseModel, ConfigDict, Field

from auth.models import User

# argon2 has no input-length truncation, but unbounded inputs would let a
# client make the server hash megabytes. 255 keeps well clear of that.
_PASSWORD_MAX = 255
_TOKEN_MAX = 256


def _checked_email(value: str) -> str:
    # Syntax check only. EmailStr would hand back the normalized form (domain
    # lowercased), but addresses are stored and matched exactly as submitted.
    validate_email(value, check_deliverability=False)
    return value


SubmittedEmail = Annotated[str, Field(max_length=320), AfterValidator(_checked_email)]


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: SubmittedEmail
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    password_confirm: str = Field(min_length=6, max_length=_PASSWORD_MAX)


class LoginRequest(BaseModel):
    """Empty strings are accepted here and rejected by the service as validation_error."""

    email: str = Field(max_length=320)
    password: str = Field(max_length=_PASSWORD_MAX)


class VerifyEmailRequest(BaseModel):
    token: str = Field(max_length=_TOKEN_MAX)


class ForgotPasswordRequest(BaseModel):
    # Plain str, not SubmittedEmail: the service normalizes and answers generically.
    email: str = Field(max_length=320)


class VerifyResetRequest(BaseModel):
    token: str = Field(max_length=_TOKEN_MAX)


class ResetPasswordRequest(BaseModel):
    reset_session_token: str = Field(max_length=_TOKEN_MAX)
    password: str = Field(min_length=6, max_length=_PASSWORD_MAX)
    password_confirm: str = Field(min_length=6, max_length=_PASSWORD_MAX)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class UserResponse(BaseModel):
    """Public view of a user. Never includes hashes or token fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    role: str
    is_active: bool
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.name,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            verified_at=user.verified_at,
            created_at=user.created_at,
        )


class LoginResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"  # noqa: S105
    expires_in: int
    user: UserResponse


class ResetSessionResponse(BaseModel):
    """Response for POST /auth/verify-reset. The token is shown exactly once."""

    model_config = ConfigDict(frozen=True)

    message: str
    reset_session_token: str
    expires_at: datetime


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
