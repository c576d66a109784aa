"""
api/routes/v1/auth.py -- Registration, login, verification, and password reset endpoints.

Routes:
  POST /api/v1/auth/register          -- create account; emails a verification challenge
  POST /api/v1/auth/login             -- password login; returns a bearer token
  POST /api/v1/auth/verify-email      -- consume a verification challenge
  POST /api/v1/auth/forgot-password   -- email a reset challenge (generic answer)
  POST /api/v1/auth/verify-reset      -- exchange a reset challenge for a reset session token
  POST /api/v1/auth/reset-password    -- set a new password with the reset session token
  GET  /api/v1/auth/me                -- current user (requires bearer token)

Handlers are plain `def`: AuthService does blocking database and SMTP I/O, so
FastAPI runs each call in its worker thread pool instead of on the event loop.

Errors raised by AuthService (auth.errors.AuthError) are not caught here; the
exception handler in api/main.py renders them into the ErrorResponse envelope.

Security:
  Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    ResetPasswordRequest,
    ResetSessionResponse,
    UserResponse,
    VerifyEmailRequest,
    VerifyResetRequest,
)
from auth.dependencies import require_user
from auth.models import User
from auth.service import AuthService

# Auth policy:
# - every POST below is public -- they are how a client obtains credentials
# - GET /api/v1/auth/me: requires auth (require_user)
router = APIRouter()


def _service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _no_store(payload: dict, status_code: int = 200) -> JSONResponse:
    resp = JSONResponse(status_code=status_code, content=payload)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/auth/register", response_model=MessageResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> MessageResponse:
    """Create an unverified account and send its verification message."""
    message = _service(request).register(body.name, body.email, body.password, body.password_confirm)
    return MessageResponse(message=message)


@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password.

    Wrong email and wrong password both answer 401 bad_credentials. An
    unverified account answers 403 email_not_verified after a new
    verification message has been sent.
    """
    result = _service(request).login(body.email, body.password)
    payload = LoginResponse(
        access_token=result.access_token,
        token_type=result.token_type,
        expires_in=result.expires_in,
        user=UserResponse.from_user(result.user),
    )
    return _no_store(payload.model_dump(mode="json"))


@router.post("/auth/verify-email", response_model=MessageResponse)
def verify_email(request: Request, body: VerifyEmailRequest) -> MessageResponse:
    """Confirm email ownership. Retrying with an already-used token is not an error."""
    return MessageResponse(message=_service(request).verify_email(body.token))


@router.post("/auth/forgot-password", response_model=MessageResponse)
def forgot_password(request: Request, body: ForgotPasswordRequest) -> MessageResponse:
    """Start a password reset. The answer never reveals whether the email is registered."""
    return MessageResponse(message=_service(request).forgot_password(body.email))


@router.post("/auth/verify-reset", response_model=ResetSessionResponse)
def verify_reset(request: Request, body: VerifyResetRequest) -> JSONResponse:
    """Exchange the emailed reset challenge for a single-use reset session token."""
    session = _service(request).verify_reset(body.token)
    payload = ResetSessionResponse(
        message=session.message,
        reset_session_token=session.token,
        expires_at=session.expires_at,
    )
    return _no_store(payload.model_dump(mode="json"))


@router.post("/auth/reset-password", response_model=MessageResponse)
def reset_password(request: Request, body: ResetPasswordRequest) -> MessageResponse:
    """Set a new password. The reset session token is consumed on success."""
    message = _service(request).reset_password(body.reset_session_token, body.password, body.password_confirm)
    return MessageResponse(message=message)


@router.get("/auth/me", response_model=UserResponse)
def me(current_user: User = Depends(require_user)) -> UserResponse:
    """Return the user the bearer token belongs to."""
    return UserResponse.from_user(current_user)
