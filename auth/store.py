"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. UserStore and RefreshTokenStore are the
repositories; _row_to_user / _row_to_refresh_token are the mappers. The
service never touches SQL directly; it depends on the UserRepository and
RefreshTokenRepository protocols, which auth/memory.py also satisfies.

Security:
  All queries use bound parameters. No f-strings in SQL.

Consistency:
  Every method opens its own short connection. Nothing spans a whole sign-in
  or refresh, so the lockout counter and refresh rotation are best-effort
  under concurrency. The counter increment itself is a single
  "SET failed_login_attempts = failed_login_attempts + 1" statement.

Timeouts:
  make_engine() applies a per-statement timeout: PostgreSQL gets a
  statement_timeout connect option, SQLite gets its busy timeout.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.engine import Engine

from auth.models import RefreshToken, User

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

_users = Table(
    "users",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(100), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("roles", JSON, nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", DateTime(timezone=True)),
)

_refresh_tokens = Table(
    "refresh_tokens",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", String(36), nullable=False, index=True),
    Column("token_hash", String(64), nullable=False, unique=True),  # SHA-256 hex
    Column("expires_at", DateTime(timezone=True), nullable=False),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("revoked", Boolean, nullable=False, server_default="0"),
)


# ---------------------------------------------------------------------------
# Repository interfaces
# ---------------------------------------------------------------------------


class UserRepository(Protocol):
    def create_user(self, user: User) -> User: ...

    def get_by_id(self, user_id: str) -> User | None: ...

    def get_by_email(self, email: str) -> User | None: ...

    def get_by_username(self, username: str) -> User | None: ...

    def iter_users(self) -> Iterator[User]: ...

    def update_user(self, user: User) -> bool: ...

    def delete_user(self, user_id: str) -> bool: ...

    def set_roles(self, user_id: str, roles: list[str]) -> bool: ...

    def increment_failed_login_attempts(self, email: str) -> None: ...

    def reset_failed_login_attempts(self, email: str) -> None: ...

    def lock_account(self, email: str, until: datetime) -> None: ...


class RefreshTokenRepository(Protocol):
    def save(self, token: RefreshToken) -> int: ...

    def get_active_by_hash(self, token_hash: str, now: datetime) -> RefreshToken | None: ...

    def revoke(self, token_hash: str) -> bool: ...


# ---------------------------------------------------------------------------
# Engine
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block on a writer."""
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def make_engine(db_url: str, statement_timeout_seconds: float = 5.0) -> Engine:
    """Create the pooled engine shared by both stores and create the schema."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
        connect_args["timeout"] = statement_timeout_seconds
    elif db_url.startswith(("postgresql", "postgres")):
        connect_args["options"] = f"-c statement_timeout={int(statement_timeout_seconds * 1000)}"
    engine = create_engine(db_url, connect_args=connect_args, pool_pre_ping=True)
    if db_url.startswith("sqlite") and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    metadata.create_all(engine)
    return engine


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on read; every stored timestamp is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Repositories
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User records.

    Usage:
        engine = make_engine("sqlite:///assetra_auth.db")
        store = UserStore(engine)
        user = store.create_user(User(username="ann", email="ann@ex.com", hashed_password=digest))
        store.get_by_email("ann@ex.com")
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def create_user(self, user: User) -> User:
        """Insert a new user, assigning a UUID4 id and timestamps.

        Raises sqlalchemy.exc.IntegrityError if email or username is taken.
        The service pre-checks uniqueness; the UNIQUE constraints catch the
        race where two sign-ups pass the pre-check together.
        """
        now = _now()
        user.id = str(uuid.uuid4())
        user.created_at = user.created_at or now
        user.updated_at = user.updated_at or now
        with self.engine.connect() as conn:
            conn.execute(
                _users.insert().values(
                    id=user.id,
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    roles=list(user.roles),
                    created_at=user.created_at,
                    updated_at=user.updated_at,
                    failed_login_attempts=user.failed_login_attempts,
                    locked_until=user.locked_until,
                )
            )
            conn.commit()
        return user

    def get_by_id(self, user_id: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        """Exact match. Callers pass a normalized (lowercase) email."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def iter_users(self) -> Iterator[User]:
        """Yield every user ordered by username."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.username)).fetchall()
        for row in rows:
            yield _row_to_user(row)

    def update_user(self, user: User) -> bool:
        """Persist username, email, password hash and updated_at.

        Roles change only through set_roles() and lockout fields through their
        own methods, so a stale User copy cannot undo either.
        """
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update()
                .where(_users.c.id == user.id)
                .values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    updated_at=user.updated_at or _now(),
                )
            )
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def set_roles(self, user_id: str, roles: list[str]) -> bool:
        """Replace a user's role list. Operator path only (see main.py)."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.update().where(_users.c.id == user_id).values(roles=list(roles), updated_at=_now())
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Login attempt tracking
    # ------------------------------------------------------------------

    def increment_failed_login_attempts(self, email: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.email == email)
                .values(failed_login_attempts=_users.c.failed_login_attempts + 1)
            )
            conn.commit()

    def reset_failed_login_attempts(self, email: str) -> None:
        with self.engine.connect() as conn:
            conn.execute(
                _users.update().where(_users.c.email == email).values(failed_login_attempts=0, locked_until=None)
            )
            conn.commit()

    def lock_account(self, email: str, until: datetime) -> None:
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.email == email).values(locked_until=until))
            conn.commit()


class RefreshTokenStore:
    """Repository for RefreshToken rows. Rows are revoked, never deleted."""

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def save(self, token: RefreshToken) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.insert().values(
                    user_id=token.user_id,
                    token_hash=token.token_hash,
                    expires_at=token.expires_at,
                    created_at=token.created_at,
                    revoked=token.revoked,
                )
            )
            conn.commit()
        token.id = result.inserted_primary_key[0]
        return token.id

    def get_active_by_hash(self, token_hash: str, now: datetime) -> RefreshToken | None:
        """Return the non-revoked row for token_hash, or None if missing or expired.

        Expiry is compared in Python because SQLite hands back naive datetimes.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _refresh_tokens.select().where(
                    (_refresh_tokens.c.token_hash == token_hash) & (_refresh_tokens.c.revoked.is_(False))
                )
            ).fetchone()
        if row is None:
            return None
        token = _row_to_refresh_token(row)
        if token.expires_at <= now:
            return None
        return token

    def revoke(self, token_hash: str) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _refresh_tokens.update().where(_refresh_tokens.c.token_hash == token_hash).values(revoked=True)
            )
            conn.commit()
        return result.rowcount > 0


# ---------------------------------------------------------------------------
# Mappers
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    m = row._mapping
    return User(
        id=m["id"],
        username=m["username"],
        email=m["email"],
        hashed_password=m["hashed_password"],
        roles=list(m["roles"] or []),
        created_at=_as_utc(m["created_at"]),
        updated_at=_as_utc(m["updated_at"]),
        failed_login_attempts=m["failed_login_attempts"] or 0,
        locked_until=_as_utc(m["locked_until"]),
    )


def _row_to_refresh_token(row) -> RefreshToken:
    m = row._mapping
    return RefreshToken(
        id=m["id"],
        user_id=m["user_id"],
        token_hash=m["token_hash"],
        expires_at=_as_utc(m["expires_at"]),
        created_at=_as_utc(m["created_at"]),
        revoked=bool(m["revoked"]),
    )
