"""
auth/challenges.py -- One-time secret generation, hashing, and expiry.

Security design decisions:
  Secrets: both modes draw from the `secrets` CSPRNG.
      otp   -- 6 decimal digits, zero-padded, uniform over [0, 1_000_000).
      token -- secrets.token_hex(32): 256 bits as 64 lowercase hex chars.

  Hashing: SHA-256 hex of the plaintext. Deterministic so the store can look a
      submitted token up by hash in O(1). Token mode secrets carry 256 bits of
      entropy, which makes a fast hash sufficient. OTP codes only carry ~20
      bits; their hash gives negligible brute-force resistance on its own and
      relies on the short expiry window.

  Expiry: a challenge is live while now < expires_at. expires_at == now is
      already expired. The check is made at verification time using the
      codec's clock, never the time the token was generated.

TokenPolicy holds the defaults (mode, expiry) and is built from Settings once
at startup, so tests can inject deterministic values and a fixed clock.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import hashlib
import re
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

OTP_MODE = "otp"
TOKEN_MODE = "token"
_MODES = (OTP_MODE, TOKEN_MODE)

_OTP_SPACE = 1_000_000
_TOKEN_BYTES = 32
DEFAULT_EXPIRY_MINUTES = 15
_LINK_TOKEN_RE = re.compile(r"[0-9a-f]{64}")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(raw: str) -> str:
    """Return SHA-256 hex of a client-submitted token, ignoring surrounding whitespace."""
    return hashlib.sha256(raw.strip().encode("utf-8")).hexdigest()


def is_link_token(raw: str) -> bool:
    """True if raw has the shape of a token-mode secret (64 lowercase hex chars)."""
    return _LINK_TOKEN_RE.fullmatch(raw.strip()) is not None


@dataclass(frozen=True)
class TokenPolicy:
    mode: str = OTP_MODE
    expiry_minutes: int = DEFAULT_EXPIRY_MINUTES

    def __post_init__(self) -> None:
        if self.mode not in _MODES:
            raise ValueError(f"Unknown token mode {self.mode!r}; expected one of {_MODES}")
        if self.expiry_minutes <= 0:
            raise ValueError("expiry_minutes must be positive")


@dataclass(frozen=True)
class IssuedToken:
    """A freshly generated secret. `plain` must only ever leave via the Notifier."""

    plain: str
    hashed: str
    expires_at: datetime
    mode: str

    def __repr__(self) -> str:
        # Keep the plaintext out of tracebacks and debug logs.
        return f"IssuedToken(mode={self.mode!r}, hashed={self.hashed[:8]}..., expires_at={self.expires_at.isoformat()})"


class TokenCodec:
    """Generate and check one-time challenge tokens.

    Usage:
        codec = TokenCodec(TokenPolicy(mode="token", expiry_minutes=30))
        issued = codec.generate()
        store.set_challenge(user_id, ChallengeSlot.VERIFICATION, issued.hashed, issued.expires_at)
        ...
        codec.is_expired(user.verification_expires)
    """

    def __init__(self, policy: TokenPolicy | None = None, clock: Callable[[], datetime] = utcnow) -> None:
        self.policy = policy or TokenPolicy()
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def generate(self, mode: str | None = None, expiry_minutes: int | None = None) -> IssuedToken:
        """Generate a new secret, its hash, and its expiry timestamp.

        mode and expiry_minutes default to the policy values. Raises ValueError
        for an unknown mode.
        """
        mode = mode or self.policy.mode
        minutes = expiry_minutes if expiry_minutes is not None else self.policy.expiry_minutes
        if mode == OTP_MODE:
            plain = f"{secrets.randbelow(_OTP_SPACE):06d}"
        elif mode == TOKEN_MODE:
            plain = secrets.token_hex(_TOKEN_BYTES)
        else:
            raise ValueError(f"Unknown token mode {mode!r}; expected one of {_MODES}")
        return IssuedToken(
            plain=plain,
            hashed=hash_token(plain),
            expires_at=self.now() + timedelta(minutes=minutes),
            mode=mode,
        )

    def hash(self, raw: str) -> str:
        return hash_token(raw)

    def is_expired(self, expires_at: datetime) -> bool:
        return not self.now() < expires_at
