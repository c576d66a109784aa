"""
auth/models.py -- Domain dataclasses for identity entities.

Pattern: Data class (pure data container, zero logic). The store maps rows to
these dataclasses; the service does the work.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum


class ChallengeSlot(str, Enum):
    """The two independent one-time-token slots carried on every user.

    Each slot is a (hash, expiry) column pair. The store only writes a pair as
    a unit, so a hash never exists without its expiry and vice versa.
    """

    VERIFICATION = "verification"
    PASSWORD_RESET = "password_reset"


class ResetStage(str, Enum):
    """Sub-kind of the token held in the password-reset slot.

    CHALLENGE is the secret emailed by forgot-password. verify-reset swaps it
    for a SESSION token, which is the only thing reset-password accepts.
    """

    CHALLENGE = "challenge"
    SESSION = "session"


@dataclass
class User:
    """An identity record.

    password_hash is an argon2id hash -- the plaintext is never stored.

    verification_token_hash / password_reset_token_hash hold SHA-256 hex of the
    one-time secret that was emailed; the secret itself only ever leaves the
    process once, inside the outbound message.

    verified_token_hash keeps the hash of the verification challenge that was
    consumed, so a retried verify-email call with the same link token can answer
    "already verified" instead of "not found". It is never a live challenge.

    A user with deleted_at set or is_active False is inert: the reset flows
    treat it as if it did not exist.
    """

    email: str
    password_hash: str
    name: str = ""
    role: str = "user"  # "user", "admin"
    id: str | None = None
    is_active: bool = True
    deleted_at: datetime | None = None
    verified_at: datetime | None = None
    verification_token_hash: str | None = None
    verification_expires: datetime | None = None
    verified_token_hash: str | None = None
    password_reset_token_hash: str | None = None
    password_reset_expires: datetime | None = None
    password_reset_stage: str | None = None
    password_changed_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
