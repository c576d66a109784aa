"""Unit tests for auth/tokens.py -- session JWT issue and decode.

Covers:
- issue() embeds sub, email, role and an exp derived from the clock
- decode() returns None for a bad signature, expiry, garbage, or missing claims
- an empty secret key is refused at construction
"""

from datetime import timedelta

import pytest
from jose import jwt

from auth.models import User
from auth.tokens import SessionIssuer
from conftest import TEST_SECRET, FrozenClock


def _user() -> User:
    return User(id="abc123", email="ada@example.com", password_hash="x", role="user")


class TestSessionIssuer:
    def test_issue_and_decode(self) -> None:
        issuer = SessionIssuer(TEST_SECRET, expire_seconds=600)
        payload = issuer.decode(issuer.issue(_user()))
        assert payload is not None
        assert payload["sub"] == "abc123"
        assert payload["email"] == "ada@example.com"
        assert payload["role"] == "user"
        assert payload["exp"] - payload["iat"] == 600

    def test_wrong_secret_rejected(self) -> None:
        token = SessionIssuer(TEST_SECRET, expire_seconds=600).issue(_user())
        other = SessionIssuer("another-secret-key-that-is-long-enough-000", expire_seconds=600)
        assert other.decode(token) is None

    def test_expired_rejected(self) -> None:
        """A token issued long ago by a frozen clock is past its exp now."""
        clock = FrozenClock()
        clock.advance(days=-30)
        issuer = SessionIssuer(TEST_SECRET, expire_seconds=60, clock=clock)
        token = issuer.issue(_user())
        assert SessionIssuer(TEST_SECRET, expire_seconds=60).decode(token) is None

    def test_garbage_rejected(self) -> None:
        assert SessionIssuer(TEST_SECRET, expire_seconds=60).decode("not.a.jwt") is None

    def test_missing_claims_rejected(self) -> None:
        from auth.challenges import utcnow

        token = jwt.encode(
            {"sub": "abc123", "exp": utcnow() + timedelta(minutes=5)},
            TEST_SECRET,
            algorithm="HS256",
        )
        assert SessionIssuer(TEST_SECRET, expire_seconds=60).decode(token) is None

    def test_empty_secret_refused(self) -> None:
        with pytest.raises(ValueError):
            SessionIssuer("", expire_seconds=60)
