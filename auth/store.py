"""
auth/store.py -- SQLAlchemy Core persistence layer for users.

Pattern: Repository + Data Mapper. UserStore is the repository; _row_to_user
is the mapper. Service and route code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.

  Token columns only ever hold SHA-256 hex digests. set_challenge() and
  clear_challenge() are the only writers of a (hash, expiry) pair and always
  write both columns in one statement, so a hash never exists without its
  expiry.

  email is UNIQUE at the DB level. create_user() lets IntegrityError
  propagate; the service maps it to ConflictError, which closes the race
  between its read-check and the insert.

Timestamps are stored as ISO 8601 UTC strings (same convention for every
column) and mapped back to timezone-aware datetimes.

Layer rule: no imports from api/ or mail/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, create_engine, event, text
from sqlalchemy.engine import Engine

from auth.models import ChallengeSlot, User

_DEFAULT_DB_URL = "sqlite:///idgate.db"

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", String(32), primary_key=True),  # uuid4 hex
    Column("name", String(255), nullable=False, server_default=""),
    Column("email", String(255), nullable=False, unique=True),
    Column("password_hash", Text, nullable=False),
    Column("role", String(30), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("deleted_at", String(32)),
    Column("verified_at", String(32)),
    Column("verification_token_hash", String(64), index=True),
    Column("verification_expires", String(32)),
    Column("verified_token_hash", String(64), index=True),
    Column("password_reset_token_hash", String(64), index=True),
    Column("password_reset_expires", String(32)),
    Column("password_reset_stage", String(16)),  # "challenge" | "session"
    Column("password_changed_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# slot -> (hash column, expiry column, stage column or None)
_SLOT_COLUMNS: dict[ChallengeSlot, tuple[str, str, str | None]] = {
    ChallengeSlot.VERIFICATION: ("verification_token_hash", "verification_expires", None),
    ChallengeSlot.PASSWORD_RESET: ("password_reset_token_hash", "password_reset_expires", "password_reset_stage"),
}

_TIMESTAMP_COLUMNS = frozenset(
    {
        "deleted_at",
        "verified_at",
        "verification_expires",
        "password_reset_expires",
        "password_changed_at",
        "created_at",
        "updated_at",
    }
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _to_iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def _from_iso(value: str | None) -> datetime | None:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User entities.

    Usage:
        store = UserStore("sqlite:///:memory:")
        user_id = store.create_user(User(email="a@x.com", password_hash=hasher.hash("pw")))
        user = store.get_by_email("a@x.com")
        store.close()
    """

    # Columns update_user() accepts. Token pairs are deliberately absent --
    # they go through set_challenge()/clear_challenge() so they move together.
    _MUTABLE_FIELDS: frozenset = frozenset(
        {
            "name",
            "password_hash",
            "role",
            "is_active",
            "deleted_at",
            "verified_at",
            "verified_token_hash",
            "password_changed_at",
        }
    )

    def __init__(self, db_url: str = _DEFAULT_DB_URL, timeout_seconds: float = 10.0) -> None:
        connect_args: dict = {}
        if db_url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        self.engine: Engine = create_engine(db_url, connect_args=connect_args)
        if db_url.startswith("sqlite"):
            event.listen(self.engine, "connect", _set_wal_mode)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    def get_by_email(self, email: str) -> User | None:
        """Look up a user by exact email (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_verification_hash(self, token_hash: str, include_consumed: bool = False) -> User | None:
        """Find the user holding this verification challenge.

        With include_consumed, a user whose consumed challenge had this hash
        is returned when nobody has it outstanding. Only pass it for link
        tokens: a 6-digit code is not unique across users, so its consumed
        hash cannot say whose retry it is.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.verification_token_hash == token_hash).limit(1)
            ).fetchone()
            if row is None and include_consumed:
                row = conn.execute(
                    _users.select()
                    .where(_users.c.verified_token_hash == token_hash)
                    .where(_users.c.verified_at.is_not(None))
                    .limit(1)
                ).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_reset_hash(self, token_hash: str) -> User | None:
        """Find the user holding this password-reset challenge or reset session."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(_users.c.password_reset_token_hash == token_hash).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new user and return its assigned id.

        Raises sqlalchemy.exc.IntegrityError if the email already exists.
        Token columns are always created empty.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user_id,
                    name=user.name,
                    email=user.email,
                    password_hash=user.password_hash,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    deleted_at=_to_iso(user.deleted_at),
                    verified_at=_to_iso(user.verified_at),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
        return user_id

    def update_user(self, user_id: str, **fields) -> bool:
        """Update a subset of mutable columns without touching the others.

        datetimes are converted to ISO strings and is_active to 0/1. Unknown
        column names raise ValueError rather than being silently dropped.

        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or non-updatable user fields: {sorted(unknown)!r}")
        values = _to_row_values(fields)
        values["updated_at"] = _now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def set_challenge(
        self,
        user_id: str,
        slot: ChallengeSlot,
        token_hash: str,
        expires_at: datetime,
        *,
        stage: str | None = None,
        expected_hash: str | None = None,
        **fields,
    ) -> bool:
        """Write a (hash, expiry) pair into slot, replacing whatever was there.

        stage tags the password-reset slot ("challenge" or "session") and must
        be None for the verification slot. expected_hash makes the write
        conditional: the row is only updated if the slot still holds that hash,
        which is how a challenge is consumed exactly once.

        Extra keyword fields (same whitelist as update_user) are written in the
        same statement. Returns True if a row was updated.
        """
        if not token_hash or expires_at is None:
            raise ValueError("set_challenge requires both a token hash and an expiry")
        hash_col, expires_col, stage_col = _SLOT_COLUMNS[slot]
        if (stage is None) != (stage_col is None):
            raise ValueError(f"stage is required for {slot.value} and only for it")
        slot_values = {hash_col: token_hash, expires_col: _to_iso(expires_at)}
        if stage_col is not None:
            slot_values[stage_col] = stage
        return self._write_slot(user_id, slot, slot_values, fields, expected_hash)

    def clear_challenge(
        self,
        user_id: str,
        slot: ChallengeSlot,
        *,
        expected_hash: str | None = None,
        **fields,
    ) -> bool:
        """Null every column of slot. Extra fields are written in the same statement.

        With expected_hash, only clears if the slot still holds that hash, so a
        compensating clear never wipes a newer challenge written concurrently.
        """
        hash_col, expires_col, stage_col = _SLOT_COLUMNS[slot]
        slot_values = {hash_col: None, expires_col: None}
        if stage_col is not None:
            slot_values[stage_col] = None
        return self._write_slot(user_id, slot, slot_values, fields, expected_hash)

    def _write_slot(
        self,
        user_id: str,
        slot: ChallengeSlot,
        slot_values: dict,
        fields: dict,
        expected_hash: str | None,
    ) -> bool:
        unknown = set(fields) - self._MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown or non-updatable user fields: {sorted(unknown)!r}")
        values = _to_row_values(fields)
        values.update(slot_values)
        values["updated_at"] = _now_iso()
        stmt = _users.update().where(_users.c.id == user_id)
        if expected_hash is not None:
            hash_col = _SLOT_COLUMNS[slot][0]
            stmt = stmt.where(_users.c[hash_col] == expected_hash)
        with self.engine.connect() as conn:
            result = conn.execute(stmt.values(**values))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _to_row_values(fields: dict) -> dict:
    values: dict = {}
    for key, value in fields.items():
        if key == "is_active":
            value = 1 if value else 0
        elif key in _TIMESTAMP_COLUMNS:
            value = _to_iso(value)
        values[key] = value
    return values


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        name=row.name,
        email=row.email,
        password_hash=row.password_hash,
        role=row.role,
        is_active=bool(row.is_active),
        deleted_at=_from_iso(row.deleted_at),
        verified_at=_from_iso(row.verified_at),
        verification_token_hash=row.verification_token_hash,
        verification_expires=_from_iso(row.verification_expires),
        verified_token_hash=row.verified_token_hash,
        password_reset_token_hash=row.password_reset_token_hash,
        password_reset_expires=_from_iso(row.password_reset_expires),
        password_reset_stage=row.password_reset_stage,
        password_changed_at=_from_iso(row.password_changed_at),
        created_at=_from_iso(row.created_at),
        updated_at=_from_iso(row.updated_at),
    )
