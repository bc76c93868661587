"""
auth/memory.py -- In-memory UserRepository / RefreshTokenRepository adapters.

Substitutable for the SQLAlchemy stores in auth/store.py. Used by the service
unit tests and the gateway test fixtures so they run without a database.

Records are copied on the way in and out so callers cannot mutate stored
state by holding on to a returned object, which matches what a real database
round trip does. Email, username and token hash uniqueness are enforced like
the SQL UNIQUE constraints, raising the same IntegrityError the SQLAlchemy
stores raise.

InMemoryRefreshTokenStore also offers all_tokens(), a read-only listing of
every issued row for callers that audit rotation and revocation. The SQL
store has no equivalent and the service never calls it.
"""

from __future__ import annotations

import copy
import threading
import uuid
from collections.abc import Iterator
from datetime import datetime, timezone

from sqlalchemy.exc import IntegrityError

from auth.models import RefreshToken, User


def _unique_violation(columns: str) -> IntegrityError:
    return IntegrityError(f"UNIQUE constraint failed: {columns}", None, Exception(columns))


class InMemoryUserStore:
    def __init__(self) -> None:
        self._users: dict[str, User] = {}
        self._lock = threading.Lock()

    def _conflicts(self, user: User) -> bool:
        return any(
            u.id != user.id and (u.email == user.email or u.username == user.username) for u in self._users.values()
        )

    def create_user(self, user: User) -> User:
        now = datetime.now(timezone.utc)
        with self._lock:
            if self._conflicts(user):
                raise _unique_violation("users.email, users.username")
            user.id = str(uuid.uuid4())
            user.created_at = user.created_at or now
            user.updated_at = user.updated_at or now
            self._users[user.id] = copy.deepcopy(user)
        return user

    def get_by_id(self, user_id: str) -> User | None:
        with self._lock:
            user = self._users.get(user_id)
            return copy.deepcopy(user) if user is not None else None

    def _find(self, **criteria) -> User | None:
        with self._lock:
            for user in self._users.values():
                if all(getattr(user, k) == v for k, v in criteria.items()):
                    return copy.deepcopy(user)
        return None

    def get_by_email(self, email: str) -> User | None:
        return self._find(email=email)

    def get_by_username(self, username: str) -> User | None:
        return self._find(username=username)

    def iter_users(self) -> Iterator[User]:
        with self._lock:
            users = sorted(self._users.values(), key=lambda u: u.username)
            snapshot = [copy.deepcopy(u) for u in users]
        yield from snapshot

    def update_user(self, user: User) -> bool:
        with self._lock:
            stored = self._users.get(user.id or "")
            if stored is None:
                return False
            if self._conflicts(user):
                raise _unique_violation("users.email, users.username")
            stored.username = user.username
            stored.email = user.email
            stored.hashed_password = user.hashed_password
            stored.updated_at = user.updated_at or datetime.now(timezone.utc)
            return True

    def delete_user(self, user_id: str) -> bool:
        with self._lock:
            return self._users.pop(user_id, None) is not None

    def set_roles(self, user_id: str, roles: list[str]) -> bool:
        with self._lock:
            stored = self._users.get(user_id)
            if stored is None:
                return False
            stored.roles = list(roles)
            return True

    def _by_email(self, email: str) -> User | None:
        return next((u for u in self._users.values() if u.email == email), None)

    def increment_failed_login_attempts(self, email: str) -> None:
        with self._lock:
            stored = self._by_email(email)
            if stored is not None:
                stored.failed_login_attempts += 1

    def reset_failed_login_attempts(self, email: str) -> None:
        with self._lock:
            stored = self._by_email(email)
            if stored is not None:
                stored.failed_login_attempts = 0
                stored.locked_until = None

    def lock_account(self, email: str, until: datetime) -> None:
        with self._lock:
            stored = self._by_email(email)
            if stored is not None:
                stored.locked_until = until


class InMemoryRefreshTokenStore:
    def __init__(self) -> None:
        self._tokens: list[RefreshToken] = []
        self._lock = threading.Lock()

    def save(self, token: RefreshToken) -> int:
        with self._lock:
            if any(t.token_hash == token.token_hash for t in self._tokens):
                raise _unique_violation("refresh_tokens.token_hash")
            token.id = len(self._tokens) + 1
            self._tokens.append(copy.deepcopy(token))
        return token.id

    def get_active_by_hash(self, token_hash: str, now: datetime) -> RefreshToken | None:
        with self._lock:
            for token in self._tokens:
                if token.token_hash == token_hash and not token.revoked and token.expires_at > now:
                    return copy.deepcopy(token)
        return None

    def revoke(self, token_hash: str) -> bool:
        with self._lock:
            for token in self._tokens:
                if token.token_hash == token_hash:
                    token.revoked = True
                    return True
        return False

    def all_tokens(self) -> list[RefreshToken]:
        """Return copies of every row ever saved, revoked and expired ones included.

        Inspection only: rows are returned in save order and changing them does
        not touch the store.
        """
        with self._lock:
            return [copy.deepcopy(t) for t in self._tokens]
