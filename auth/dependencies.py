"""
auth/dependencies.py -- FastAPI dependencies that resolve the bearer session.

    Authorization: Bearer <session JWT>

optional_user() answers None for anything short of a valid session;
require_user() turns that None into a 401 with a WWW-Authenticate header.

The JWT subject is looked up in the store on every call, so a user who has
been deactivated or soft-deleted loses access at once, even while their token
is unexpired.

Layer rule: no imports from mail/. fastapi is allowed here because these
functions are dependency providers.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User

_UNAUTHORIZED = {"code": "unauthorized", "message": "Authentication required."}


def _bearer_token(request: Request) -> str | None:
    scheme, _, token = request.headers.get("Authorization", "").partition(" ")
    token = token.strip()
    if scheme.lower() != "bearer" or not token:
        return None
    return token


def optional_user(request: Request) -> User | None:
    """Return the live user behind the request's bearer token, or None. Never raises."""
    token = _bearer_token(request)
    if token is None:
        return None
    claims = request.app.state.session_issuer.decode(token)
    if claims is None:
        return None
    user = request.app.state.user_store.get_by_id(claims["sub"])
    if user is None or not user.is_active or user.deleted_at is not None:
        return None
    return user


def require_user(request: Request) -> User:
    """Dependency for protected routes:

        @router.get("/auth/me")
        def me(user: User = Depends(require_user)): ...
    """
    user = optional_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"})
    return user
