"""
api/main.py -- idgate HTTP application.

Run with:  uvicorn asgi:app --reload

Request path through the middleware (outermost first; Starlette wraps the
most recently added middleware around the others):
  1. security_headers      -- nosniff, frame, referrer and CORP headers
  2. log_requests          -- one access-log line per request
  3. CORSMiddleware        -- answers preflights for the configured origins
  4. TrustedHostMiddleware -- drops requests whose Host header is not allowed

The lifespan builds every long-lived object once (store, mail transport,
session issuer, AuthService) and hangs it on app.state; routes only read
app.state. Shutdown disposes of the database engine.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import AuthError
from auth.service import AuthService
from auth.store import UserStore
from auth.tokens import SessionIssuer
from core.config import get_settings
from core.logging import configure_logging
from mail import build_notifier

__version__ = "0.1.0"

logger = logging.getLogger("idgate.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Startup / shutdown
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Wire the auth stack onto app.state for the lifetime of the server.

    The mail transport is picked here and nowhere else; AuthService only ever
    sees the Notifier interface.
    """
    configure_logging(_settings.log_level)
    logger.info("idgate API starting (version %s)", __version__)

    store = UserStore(_settings.database_url, timeout_seconds=_settings.database_timeout_seconds)
    issuer = SessionIssuer.from_settings(_settings)
    app.state.user_store = store
    app.state.session_issuer = issuer
    app.state.auth_service = AuthService.from_settings(_settings, store, build_notifier(_settings))
    logger.info(
        "Auth ready: mail_driver=%s verification_mode=%s",
        _settings.mail_driver,
        _settings.email_verification_mode,
    )

    yield

    store.close()
    logger.info("idgate API stopped")


app = FastAPI(
    title="idgate API",
    description="Registration, login, email verification, and password reset.",
    version=__version__,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_methods=["GET", "POST"],
    allow_headers=["Authorization", "Content-Type"],
    max_age=3600,
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Access log: method, path, status, latency, client. Bodies are never logged."""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        elapsed_ms,
        request.client.host if request.client else "unknown",
    )
    return response


_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "SAMEORIGIN",
    "Referrer-Policy": "no-referrer",
    "Cross-Origin-Resource-Policy": "cross-origin",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    """Hardening headers on every response, error envelopes included."""
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Error envelope
#
# Every failure, whatever raised it, leaves as {"error": {code, message, detail}}.
# ---------------------------------------------------------------------------


def _error(
    status_code: int,
    code: str,
    message: str,
    detail: str | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    body = ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail))
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Render a service error with the status and code the error class carries."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.code)
    return _error(exc.status_code, exc.code, exc.message, headers={"Cache-Control": "no-store"})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed bodies share the service's 400 validation_error.

    detail lists field locations and messages only; submitted values (which may
    be passwords) are not echoed.
    """
    problems = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in exc.errors())
    return _error(400, "validation_error", "Request validation failed.", detail=problems)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the envelope; a dict detail is passed through as-is."""
    if isinstance(exc.detail, dict):
        return JSONResponse(status_code=exc.status_code, content={"error": exc.detail}, headers=exc.headers)
    return _error(exc.status_code, f"http_{exc.status_code}", str(exc.detail), headers=exc.headers)


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Anything unexpected, store failures included. The traceback goes to the log only."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", tags=["Health"])
def health(request: Request) -> HealthResponse:
    """Liveness plus a database round-trip. Never requires authentication."""
    try:
        db_status = "ok" if request.app.state.user_store.ping() else "error"
    except Exception:
        logger.exception("Health check: database ping failed")
        db_status = "error"
    return HealthResponse(
        status="healthy" if db_status == "ok" else "degraded",
        version=__version__,
        components={"app": "ok", "database": db_status},
    )
