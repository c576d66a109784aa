"""
auth/service.py -- Registration, login, email verification, and password reset.

AuthService is the only place that moves a user's challenge slots between
states. Per user there are two independent slots:

  verification    NONE -> PENDING -> CONSUMED (verified_at set)
  password reset  NONE -> PENDING(challenge) -> PENDING(session) -> NONE

A PENDING slot whose deadline has passed stays in place until it is
overwritten; every check answers Expired until then. Any slot written for an
outbound message is compensated (cleared) if the message is not delivered,
so a token is never left live without having been emailed.

Security:
  - Plaintext passwords and tokens are never logged; log lines carry the flow
    name and user id only.
  - login() raises the same InvalidCredentials for unknown email and wrong
    password, and runs one argon2 verify in both cases so response time does
    not reveal which.
  - forgot_password() builds its response in a single place, so unknown,
    inactive, soft-deleted and real accounts get byte-identical answers.

Store calls are sequential and there is no in-process locking. Writes that
consume a token are conditional on the slot still holding that token's hash,
which keeps a challenge single-use even under concurrent requests.

Layer rule: no imports from api/. mail/ is used through the Notifier
interface only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy.exc import IntegrityError

from auth.challenges import TOKEN_MODE, IssuedToken, TokenCodec, TokenPolicy, is_link_token
from auth.errors import (
    AccountInactive,
    ConflictError,
    EmailDeliveryError,
    EmailNotVerified,
    Expired,
    InvalidCredentials,
    NotFound,
    ValidationError,
)
from auth.messages import password_reset_message, verification_message
from auth.models import ChallengeSlot, ResetStage, User
from auth.passwords import _DUMMY_HASH, PasswordHasher
from auth.tokens import SessionIssuer
from mail.base import MailMessage, Notifier, NotifierError

if TYPE_CHECKING:
    from auth.store import UserStore
    from core.config import Settings

logger = logging.getLogger("idgate.auth")

REGISTERED_MESSAGE = "Please verify your email. Check inbox or spam."
EMAIL_VERIFIED_MESSAGE = "Email verified successfully"
ALREADY_VERIFIED_MESSAGE = "Email already verified"
FORGOT_PASSWORD_MESSAGE = "If that email exists, we sent reset instructions."
RESET_VERIFIED_MESSAGE = "Reset verified. You can now set a new password."
PASSWORD_RESET_MESSAGE = "Password reset successfully"

_INVALID_CREDENTIALS = "Invalid email or password"
_DELIVERY_FAILED = "There was an error sending the email. Try again later."


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LoginResult:
    access_token: str
    expires_in: int
    user: User
    token_type: str = "bearer"  # noqa: S105 -- OAuth token type, not a password


@dataclass(frozen=True)
class ResetSession:
    """Second-stage reset token, returned once to the client that proved the challenge."""

    message: str
    token: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"ResetSession(message={self.message!r}, expires_at={self.expires_at.isoformat()})"


# ---------------------------------------------------------------------------
# Two-phase challenge write
# ---------------------------------------------------------------------------


class StagedChallenge:
    """Tentatively write a challenge, then commit it or compensate.

    Usage:
        with StagedChallenge(store, user.id, ChallengeSlot.VERIFICATION, issued, flow="register") as staged:
            notifier.send(message)
            staged.commit()

    Entering writes the (hash, expiry) pair. Leaving without commit() -- an
    exception from the notifier, a timeout, or anything else -- runs the
    compensating clear. The clear is conditional on the slot still holding
    this challenge's hash, so it never wipes a newer challenge.
    """

    def __init__(
        self,
        store: UserStore,
        user_id: str,
        slot: ChallengeSlot,
        issued: IssuedToken,
        *,
        flow: str,
        stage: ResetStage | None = None,
    ) -> None:
        self._store = store
        self.user_id = user_id
        self.slot = slot
        self.issued = issued
        self.flow = flow
        self._stage = stage
        self.committed = False

    def __enter__(self) -> StagedChallenge:
        self._store.set_challenge(
            self.user_id,
            self.slot,
            self.issued.hashed,
            self.issued.expires_at,
            stage=self._stage.value if self._stage is not None else None,
        )
        return self

    def commit(self) -> None:
        self.committed = True

    def compensate(self) -> None:
        self._store.clear_challenge(self.user_id, self.slot, expected_hash=self.issued.hashed)
        logger.info("%s: rolled back %s challenge user_id=%s", self.flow, self.slot.value, self.user_id)

    def __exit__(self, exc_type, exc, tb) -> bool:
        if self.committed:
            return False
        if exc_type is None:
            self.compensate()
            return False
        # Already unwinding: a failing compensation must not mask the original error.
        try:
            self.compensate()
        except Exception:
            logger.exception(
                "%s: compensating clear of %s challenge failed user_id=%s",
                self.flow,
                self.slot.value,
                self.user_id,
            )
        return False


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


def _is_inert(user: User) -> bool:
    return user.deleted_at is not None or not user.is_active


class AuthService:
    """Coordinates the store, password hasher, token codec, notifier, and session issuer.

    Construct once at startup (see from_settings) and share across requests;
    the service holds no per-request state.
    """

    def __init__(
        self,
        store: UserStore,
        notifier: Notifier,
        *,
        codec: TokenCodec,
        issuer: SessionIssuer,
        app_url: str,
        hasher: PasswordHasher | None = None,
        reset_expiry_minutes: int | None = None,
    ) -> None:
        self._store = store
        self._notifier = notifier
        self._codec = codec
        self._issuer = issuer
        self._app_url = app_url
        self._hasher = hasher or PasswordHasher()
        self._reset_expiry_minutes = reset_expiry_minutes or codec.policy.expiry_minutes

    @classmethod
    def from_settings(cls, settings: Settings, store: UserStore, notifier: Notifier) -> AuthService:
        policy = TokenPolicy(
            mode=settings.email_verification_mode,
            expiry_minutes=settings.email_verification_expiry_minutes,
        )
        return cls(
            store,
            notifier,
            codec=TokenCodec(policy),
            issuer=SessionIssuer.from_settings(settings),
            app_url=settings.app_url,
            reset_expiry_minutes=settings.password_reset_expiry_minutes,
        )

    # ------------------------------------------------------------------
    # Register / login
    # ------------------------------------------------------------------

    def register(self, name: str, email: str, password: str, password_confirm: str) -> str:
        """Create an unverified account and email its first verification challenge.

        If the email cannot be delivered the account is kept (it can request a
        new challenge by logging in) but the challenge is cleared and
        EmailDeliveryError is raised.
        """
        if not email or not email.strip():
            raise ValidationError("Email is required")
        if not password:
            raise ValidationError("Password is required")
        if password != password_confirm:
            raise ValidationError("Passwords do not match")

        password_hash = self._hasher.hash(password)

        if self._store.get_by_email(email) is not None:
            raise ConflictError("Email already in use")
        try:
            user_id = self._store.create_user(User(name=name, email=email, password_hash=password_hash))
        except IntegrityError as exc:
            # Lost the race against a concurrent registration for the same email.
            raise ConflictError("Email already in use") from exc
        logger.info("register: created user_id=%s", user_id)

        self._send_verification("register", user_id, email)
        return REGISTERED_MESSAGE

    def login(self, email: str, password: str) -> LoginResult:
        """Check credentials and issue a session token.

        An unverified account is refused with EmailNotVerified after a fresh
        verification challenge has been sent (replacing any earlier one).
        """
        if not email or not password:
            raise ValidationError("Email and password are required")

        user = self._store.get_by_email(email)
        if user is None:
            # Equalize timing -- do NOT return before running argon2.
            self._hasher.verify(_DUMMY_HASH, password)
            raise InvalidCredentials(_INVALID_CREDENTIALS)
        if not self._hasher.verify(user.password_hash, password):
            logger.info("login: bad password user_id=%s", user.id)
            raise InvalidCredentials(_INVALID_CREDENTIALS)
        if _is_inert(user):
            logger.info("login: refused inactive user_id=%s", user.id)
            raise AccountInactive("Account is not active")

        if user.verified_at is None:
            self._send_verification("login", user.id, user.email)
            logger.info("login: refused unverified user_id=%s, new challenge sent", user.id)
            raise EmailNotVerified("Email not verified. We sent you a new verification message.")

        token = self._issuer.issue(user)
        logger.info("login: session issued user_id=%s", user.id)
        return LoginResult(access_token=token, expires_in=self._issuer.expire_seconds, user=user)

    # ------------------------------------------------------------------
    # Email verification
    # ------------------------------------------------------------------

    def verify_email(self, token: str) -> str:
        """Consume a verification challenge. Retrying with the same link token is safe."""
        if not token or not token.strip():
            raise ValidationError("Verification token is required")

        token_hash = self._codec.hash(token)
        # A consumed 6-digit code may be another user's; only link tokens are retry-safe.
        user = self._store.get_by_verification_hash(token_hash, include_consumed=is_link_token(token))
        if user is None:
            raise NotFound("Invalid verification token")
        if user.verified_at is not None:
            return ALREADY_VERIFIED_MESSAGE
        if user.verification_expires is None:
            logger.warning("verify_email: hash without expiry user_id=%s", user.id)
            raise ValidationError("Verification token is not active")
        if self._codec.is_expired(user.verification_expires):
            logger.info("verify_email: expired challenge user_id=%s", user.id)
            raise Expired("Verification token expired")

        consumed = self._store.clear_challenge(
            user.id,
            ChallengeSlot.VERIFICATION,
            expected_hash=token_hash,
            verified_at=self._codec.now(),
            verified_token_hash=token_hash,
        )
        if not consumed:
            # Replaced by a newer challenge between the read and this write.
            raise NotFound("Invalid verification token")
        logger.info("verify_email: verified user_id=%s", user.id)
        return EMAIL_VERIFIED_MESSAGE

    # ------------------------------------------------------------------
    # Password reset
    # ------------------------------------------------------------------

    def forgot_password(self, email: str) -> str:
        """Email a reset challenge if the account exists and is active.

        The return value is identical whether or not a message was sent. Only a
        delivery failure for a real account is observable (EmailDeliveryError).
        """
        normalized = (email or "").strip().lower()
        if not normalized:
            raise ValidationError("Email is required")

        user = self._store.get_by_email(normalized)
        if user is not None and not _is_inert(user):
            issued = self._codec.generate(expiry_minutes=self._reset_expiry_minutes)
            with StagedChallenge(
                self._store,
                user.id,
                ChallengeSlot.PASSWORD_RESET,
                issued,
                flow="forgot_password",
                stage=ResetStage.CHALLENGE,
            ) as staged:
                self._deliver("forgot_password", user.id, password_reset_message(user.email, issued, self._app_url))
                staged.commit()
            logger.info("forgot_password: reset challenge sent user_id=%s", user.id)
        else:
            logger.info("forgot_password: no eligible account")
        return FORGOT_PASSWORD_MESSAGE

    def verify_reset(self, token: str) -> ResetSession:
        """Exchange an emailed reset challenge for a reset session token.

        The challenge is consumed by the exchange: its hash is overwritten by the
        session token's hash, so it can never be presented again.
        """
        if not token or not token.strip():
            raise ValidationError("Reset token is required")

        challenge_hash = self._codec.hash(token)
        user = self._store.get_by_reset_hash(challenge_hash)
        if user is None or user.password_reset_stage != ResetStage.CHALLENGE:
            raise NotFound("Invalid reset token")
        self._check_reset_slot(user, "Reset token", flow="verify_reset")

        session = self._codec.generate(mode=TOKEN_MODE, expiry_minutes=self._reset_expiry_minutes)
        rotated = self._store.set_challenge(
            user.id,
            ChallengeSlot.PASSWORD_RESET,
            session.hashed,
            session.expires_at,
            stage=ResetStage.SESSION.value,
            expected_hash=challenge_hash,
        )
        if not rotated:
            raise NotFound("Invalid reset token")
        logger.info("verify_reset: challenge exchanged for session user_id=%s", user.id)
        return ResetSession(message=RESET_VERIFIED_MESSAGE, token=session.plain, expires_at=session.expires_at)

    def reset_password(self, reset_session_token: str, password: str, password_confirm: str) -> str:
        """Set a new password using a reset session token. The session is single-use."""
        if not reset_session_token or not reset_session_token.strip():
            raise ValidationError("Reset session token is required")
        if not password:
            raise ValidationError("Password is required")
        if password != password_confirm:
            raise ValidationError("Passwords do not match")

        session_hash = self._codec.hash(reset_session_token)
        user = self._store.get_by_reset_hash(session_hash)
        if user is None or user.password_reset_stage != ResetStage.SESSION:
            raise NotFound("Invalid reset session token")
        self._check_reset_slot(user, "Reset session", flow="reset_password")

        if self._hasher.verify(user.password_hash, password):
            raise ValidationError("New password must be different")

        changed = self._store.clear_challenge(
            user.id,
            ChallengeSlot.PASSWORD_RESET,
            expected_hash=session_hash,
            password_hash=self._hasher.hash(password),
            password_changed_at=self._codec.now(),
        )
        if not changed:
            raise NotFound("Invalid reset session token")
        logger.info("reset_password: password changed user_id=%s", user.id)
        return PASSWORD_RESET_MESSAGE

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _check_reset_slot(self, user: User, label: str, *, flow: str) -> None:
        if _is_inert(user):
            logger.info("%s: refused inactive user_id=%s", flow, user.id)
            raise ValidationError("Account is not active")
        if user.password_reset_expires is None:
            logger.warning("%s: hash without expiry user_id=%s", flow, user.id)
            raise ValidationError(f"{label} is not active")
        if self._codec.is_expired(user.password_reset_expires):
            logger.info("%s: expired user_id=%s", flow, user.id)
            raise Expired(f"{label} expired")

    def _send_verification(self, flow: str, user_id: str, email: str) -> None:
        issued = self._codec.generate()
        with StagedChallenge(self._store, user_id, ChallengeSlot.VERIFICATION, issued, flow=flow) as staged:
            self._deliver(flow, user_id, verification_message(email, issued, self._app_url))
            staged.commit()

    def _deliver(self, flow: str, user_id: str, message: MailMessage) -> None:
        try:
            self._notifier.send(message)
        except NotifierError as exc:
            logger.error("%s: email delivery failed user_id=%s: %s", flow, user_id, exc)
            raise EmailDeliveryError(_DELIVERY_FAILED) from exc
