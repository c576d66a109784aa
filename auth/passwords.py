"""
auth/passwords.py -- Password hashing with argon2id.

argon2id is memory-hard: each guess costs the attacker RAM as well as CPU,
which is what low-entropy secrets like passwords need. The argon2-cffi
defaults (RFC 9106 low-memory profile) are used unchanged; the parameters are
embedded in every encoded hash, so raising them later does not invalidate
existing hashes.

verify() never raises. A mismatch, a malformed stored hash, or an empty hash
all answer False -- callers turn that into InvalidCredentials.

The _DUMMY_HASH constant enables timing equalization in the login flow: when
an email is unknown the service still runs one verify() so response time does
not reveal whether the account exists.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import argon2
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError


class PasswordHasher:
    """Thin wrapper so the service depends on two methods, not on argon2 directly."""

    def __init__(self) -> None:
        self._hasher = argon2.PasswordHasher(type=argon2.Type.ID)

    def hash(self, password: str) -> str:
        return self._hasher.hash(password)

    def verify(self, password_hash: str | None, password: str) -> bool:
        """Return True if password matches password_hash."""
        if not password_hash:
            return False
        try:
            return self._hasher.verify(password_hash, password)
        except (VerifyMismatchError, VerificationError, InvalidHashError):
            return False


# Computed once at module load so the first failed login is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = PasswordHasher().hash("idgate_timing_dummy")
