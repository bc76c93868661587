"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, near-zero logic). Stores and the
service do the work; these types only own the domain shape.

User is the full persisted record including the password hash and lockout
fields. PublicUser is what leaves the service: it never carries the hash,
the failed-attempt counter or the lock timestamp.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

DEFAULT_ROLES = ("user",)


@dataclass
class User:
    """An account record as held by the user store.

    id is None before the record is written; the store assigns a UUID4 string.
    roles is an unordered list of membership tags ("user", "admin", ...).
    It is only ever changed through direct store access, never through
    AuthService.update_user().
    """

    username: str
    email: str  # normalized lowercase
    hashed_password: str
    roles: list[str] = field(default_factory=lambda: list(DEFAULT_ROLES))
    id: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    failed_login_attempts: int = 0
    locked_until: datetime | None = None

    def to_public(self) -> PublicUser:
        return PublicUser(
            id=self.id or "",
            username=self.username,
            email=self.email,
            roles=list(self.roles),
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


@dataclass(frozen=True)
class PublicUser:
    """Public view of a user. Safe to serialize to clients."""

    id: str
    username: str
    email: str
    roles: list[str]
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass
class RefreshToken:
    """One issued refresh token.

    Only token_hash (SHA-256 hex of the secret) is persisted; the plaintext
    secret is handed to the client once and never stored. Rotation inserts a
    new row and sets revoked=True on the old one, so rows are append-only
    apart from the revoked flag.
    """

    user_id: str
    token_hash: str
    expires_at: datetime
    created_at: datetime
    revoked: bool = False
    id: int | None = None


@dataclass(frozen=True)
class TokenPayload:
    """Claims recovered from a verified access token. Never stored."""

    user_id: str
    roles: list[str]
    issued_at: datetime
    expires_at: datetime


@dataclass
class SignUpCandidate:
    name: str
    email: str
    password: str


@dataclass
class UserChanges:
    """Partial update. Empty strings mean "leave unchanged"."""

    name: str = ""
    email: str = ""
    password: str = ""


@dataclass(frozen=True)
class AuthResult:
    """Returned by sign-up and sign-in."""

    user: PublicUser
    access_token: str
    refresh_token: str


@dataclass(frozen=True)
class TokenPair:
    """Returned by refresh: a new access token and the rotated refresh secret."""

    access_token: str
    refresh_token: str
