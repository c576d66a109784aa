"""
auth/tokens.py -- Signed bearer tokens for authenticated sessions.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SECRET_KEY and carry
       sub (user id), email, role, iat, and exp. decode() returns None on any
       failure -- bad signature, expired, malformed, or missing claims -- and
       the dependency layer turns that into a 401.

  The issuer never touches the store. Resolving the subject back to a live
  user on protected routes is auth/dependencies.py's job, so a token for a
  user who has since been deactivated stops working immediately.

  SECRET_KEY and expiry come from core.config.get_settings() via
  SessionIssuer.from_settings(); tests construct the issuer directly.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.challenges import utcnow

if TYPE_CHECKING:
    from auth.models import User
    from core.config import Settings

_ALGORITHM = "HS256"
_REQUIRED_CLAIMS = ("sub", "email", "role")


class SessionIssuer:
    """Encode and verify session JWTs.

    Usage:
        issuer = SessionIssuer(secret_key, expire_seconds=3600)
        token = issuer.issue(user)
        payload = issuer.decode(token)  # dict or None
    """

    def __init__(
        self,
        secret_key: str,
        expire_seconds: int,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        if not secret_key:
            raise ValueError("SessionIssuer requires a non-empty secret key")
        self._secret_key = secret_key
        self.expire_seconds = expire_seconds
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings) -> SessionIssuer:
        return cls(settings.secret_key, settings.token_expire_seconds)

    def issue(self, user: User) -> str:
        """Sign a token for user with the configured expiry."""
        now = self._clock()
        payload = {
            "sub": user.id,
            "email": user.email,
            "role": user.role,
            "iat": now,
            "exp": now + timedelta(seconds=self.expire_seconds),
        }
        return jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)

    def decode(self, token: str) -> dict | None:
        """Decode and verify a token. Returns the payload dict or None on any failure."""
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if any(not payload.get(claim) for claim in _REQUIRED_CLAIMS):
            return None
        return payload
