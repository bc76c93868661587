"""
auth/service.py -- AuthService: sign-up, sign-in, refresh, logout, user CRUD.

AuthService composes the validators, PasswordHasher, TokenIssuer and
LockoutGuard over a UserRepository and a RefreshTokenRepository. It holds no
mutable state of its own, so one instance serves every concurrent request.

Error policy:
  Validation, lockout and credential failures raise the AuthError subclass
  with a user-facing message. Store failures (SQLAlchemyError) and crypto
  failures are logged with the traceback and re-raised as InternalFailure
  carrying a generic message. Side effects that do not change the answer
  (counter bookkeeping, revoking the presented refresh token) are logged
  and swallowed.

Sign-in ordering:
  The lock check runs before the password comparison, so a locked account
  costs no bcrypt work and gets "account locked" instead of "invalid
  credentials". An unknown email still pays for one bcrypt comparison
  against a dummy digest so timing does not reveal which emails exist.

Rotation:
  refresh_token() revokes the presented row and then inserts a new one as
  two separate writes. A crash between them leaves the caller with no valid
  refresh token; they must sign in again.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime

from jose import JWTError
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from auth.errors import (
    AccountLocked,
    DuplicateUser,
    InternalFailure,
    InvalidCredentials,
    InvalidRefreshToken,
    NotFound,
    ValidationError,
)
from auth.lockout import LockoutGuard, LockState
from auth.models import (
    AuthResult,
    PublicUser,
    RefreshToken,
    SignUpCandidate,
    TokenPair,
    User,
    UserChanges,
)
from auth.passwords import PasswordHasher
from auth.store import RefreshTokenRepository, UserRepository
from auth.tokens import TokenIssuer
from auth.validators import (
    normalize_email,
    sanitize_name,
    validate_sign_up,
    validate_update,
    validate_user_id,
)

logger = logging.getLogger("assetra.auth")

_AUTH_FAILED = "authentication failed"
_CREATE_FAILED = "failed to create user"
_UPDATE_FAILED = "failed to update user"


def _lock_state(user: User) -> LockState:
    return LockState(user.failed_login_attempts, user.locked_until)


@contextmanager
def _store_call(failure_message: str, operation: str) -> Iterator[None]:
    """Translate store exceptions into InternalFailure after logging them."""
    try:
        yield
    except SQLAlchemyError:
        logger.exception("Store failure during %s", operation)
        raise InternalFailure(failure_message) from None


class AuthService:
    """Credential authentication and session token lifecycle.

    Usage:
        service = AuthService(UserStore(engine), RefreshTokenStore(engine),
                              TokenIssuer(TokenConfig.from_settings(settings)),
                              PasswordHasher(settings.bcrypt_rounds))
        result = service.sign_up(SignUpCandidate(name="Ann Lee", email="ann@ex.com", password="Str0ng!Pass"))
        pair = service.refresh_token(result.refresh_token)
    """

    def __init__(
        self,
        users: UserRepository,
        refresh_tokens: RefreshTokenRepository,
        issuer: TokenIssuer,
        hasher: PasswordHasher,
        guard: LockoutGuard | None = None,
    ) -> None:
        self._users = users
        self._refresh_tokens = refresh_tokens
        self._issuer = issuer
        self._hasher = hasher
        self._guard = guard or LockoutGuard()

    @property
    def issuer(self) -> TokenIssuer:
        return self._issuer

    # ------------------------------------------------------------------
    # Sign-up / sign-in
    # ------------------------------------------------------------------

    def sign_up(self, candidate: SignUpCandidate) -> AuthResult:
        email = normalize_email(candidate.email)
        logger.info("Sign-up attempt for email=%s", email)

        try:
            validate_sign_up(SignUpCandidate(name=candidate.name, email=email, password=candidate.password))
        except ValidationError as exc:
            logger.info("Sign-up validation failed for %s: %s", email, exc.message)
            raise

        username = sanitize_name(candidate.name)
        with _store_call(_CREATE_FAILED, "sign-up uniqueness check"):
            self._check_uniqueness(None, email, username)

        digest = self._hash_password(candidate.password, _CREATE_FAILED)
        user = User(username=username, email=email, hashed_password=digest)
        with _store_call(_CREATE_FAILED, "sign-up insert"):
            try:
                user = self._users.create_user(user)
            except IntegrityError:
                logger.info("Sign-up lost a uniqueness race for %s", email)
                raise DuplicateUser() from None

        result = self._start_session(user, self._issuer.now())
        logger.info("Successful sign-up for %s (id=%s)", user.email, user.id)
        return result

    def sign_in(self, email: str, password: str) -> AuthResult:
        email = normalize_email(email)
        logger.info("Sign-in attempt for email=%s", email)
        now = self._issuer.now()

        with _store_call(_AUTH_FAILED, "sign-in lookup"):
            user = self._users.get_by_email(email)

        if user is not None and self._guard.is_locked(_lock_state(user), now):
            logger.warning("Sign-in attempt for locked account: %s", email)
            raise AccountLocked()

        if user is None:
            self._hasher.verify_dummy(password)
            logger.info("Failed sign-in for %s: unknown email", email)
            raise InvalidCredentials()

        if not self._hasher.verify(password, user.hashed_password):
            logger.info("Failed sign-in for %s: wrong password", email)
            self._record_failure(email, now)
            raise InvalidCredentials()

        self._best_effort("reset failed login attempts", self._users.reset_failed_login_attempts, email)
        result = self._start_session(user, now)
        logger.info("Successful sign-in for %s (id=%s)", email, user.id)
        return result

    def _record_failure(self, email: str, now: datetime) -> None:
        if not self._best_effort("increment failed login attempts", self._users.increment_failed_login_attempts, email):
            return
        try:
            updated = self._users.get_by_email(email)
        except SQLAlchemyError:
            logger.exception("Failed to re-read lock state for %s", email)
            return
        if updated is None:
            return
        deadline = self._guard.lock_deadline(_lock_state(updated), now)
        if deadline is not None and self._best_effort("lock account", self._users.lock_account, email, deadline):
            logger.warning(
                "Account locked until %s after %d failed attempts: %s",
                deadline.isoformat(),
                updated.failed_login_attempts,
                email,
            )

    # ------------------------------------------------------------------
    # Refresh / logout
    # ------------------------------------------------------------------

    def refresh_token(self, secret: str) -> TokenPair:
        """Exchange a refresh secret for a new access token and a rotated secret."""
        logger.info("Refresh token request")
        if not secret:
            raise InvalidRefreshToken()

        token_hash = self._issuer.hash_refresh_token(secret)
        now = self._issuer.now()
        with _store_call(_AUTH_FAILED, "refresh token lookup"):
            stored = self._refresh_tokens.get_active_by_hash(token_hash, now)
        if stored is None:
            logger.info("Refresh token not found, revoked or expired")
            raise InvalidRefreshToken()

        with _store_call(_AUTH_FAILED, "refresh token owner lookup"):
            user = self._users.get_by_id(stored.user_id)
        if user is None:
            logger.warning("Refresh token owner %s no longer exists", stored.user_id)
            raise InvalidRefreshToken()

        access_token = self._mint_access_token(user)
        self._best_effort("revoke old refresh token", self._refresh_tokens.revoke, token_hash)
        new_secret = self._store_refresh_token(user, now)

        logger.info("Token refreshed for user %s (id=%s)", user.email, user.id)
        return TokenPair(access_token=access_token, refresh_token=new_secret)

    def logout(self, secret: str) -> None:
        """Revoke the presented refresh secret. Unknown secrets are ignored."""
        if not secret:
            return
        token_hash = self._issuer.hash_refresh_token(secret)
        if self._best_effort("revoke refresh token on logout", self._refresh_tokens.revoke, token_hash):
            logger.info("Refresh token revoked on logout")

    # ------------------------------------------------------------------
    # User management
    # ------------------------------------------------------------------

    def get_user(self, user_id: str) -> PublicUser:
        validate_user_id(user_id)
        with _store_call("error finding user", "get user"):
            user = self._users.get_by_id(user_id)
        if user is None:
            raise NotFound(f"no user found with id: {user_id}")
        return user.to_public()

    def list_users(self) -> Iterator[PublicUser]:
        """Yield every user's public view, ending normally when the store is exhausted."""
        with _store_call("error listing users", "list users"):
            for user in self._users.iter_users():
                yield user.to_public()

    def update_user(self, user_id: str, changes: UserChanges) -> PublicUser:
        """Apply the non-empty fields of changes. Roles cannot be changed here."""
        validate_user_id(user_id)
        email = normalize_email(changes.email) if changes.email else ""
        try:
            validate_update(UserChanges(name=changes.name, email=email, password=changes.password))
        except ValidationError as exc:
            logger.info("Update validation failed for id=%s: %s", user_id, exc.message)
            raise

        with _store_call(_UPDATE_FAILED, "update lookup"):
            existing = self._users.get_by_id(user_id)
        if existing is None:
            raise NotFound(f"no user found with id: {user_id}")

        if changes.password:
            existing.hashed_password = self._hash_password(changes.password, _UPDATE_FAILED)
        if changes.name and existing.username != changes.name:
            existing.username = sanitize_name(changes.name)
        if email:
            existing.email = email
        existing.updated_at = self._issuer.now()

        with _store_call(_UPDATE_FAILED, "update write"):
            self._check_uniqueness(existing.id, existing.email, existing.username)
            try:
                updated = self._users.update_user(existing)
            except IntegrityError:
                logger.info("Update lost a uniqueness race for id=%s", user_id)
                raise DuplicateUser() from None
        if not updated:
            raise NotFound(f"no user found with id: {user_id}")

        logger.info("User updated: %s (id=%s)", existing.email, existing.id)
        return existing.to_public()

    def delete_user(self, user_id: str) -> None:
        validate_user_id(user_id)
        with _store_call("error deleting user", "delete user"):
            deleted = self._users.delete_user(user_id)
        if not deleted:
            raise NotFound(f"no user found with id: {user_id}")
        logger.info("User deleted: id=%s", user_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _check_uniqueness(self, user_id: str | None, email: str, username: str) -> None:
        """Raise DuplicateUser if email or username belongs to a different user."""
        found = self._users.get_by_email(email)
        if found is not None and found.id != user_id:
            raise DuplicateUser("there is already one user with this email registered")
        found = self._users.get_by_username(username)
        if found is not None and found.id != user_id:
            raise DuplicateUser("there is already one user with this username registered")

    def _hash_password(self, plain: str, failure_message: str) -> str:
        try:
            return self._hasher.hash(plain)
        except (ValueError, OSError):
            logger.exception("Password hashing failed")
            raise InternalFailure(failure_message) from None

    def _mint_access_token(self, user: User) -> str:
        try:
            return self._issuer.issue_access_token(user.id or "", user.roles)
        except JWTError:
            logger.exception("Access token generation failed for user id=%s", user.id)
            raise InternalFailure(_AUTH_FAILED) from None

    def _store_refresh_token(self, user: User, now: datetime) -> str:
        try:
            secret = self._issuer.issue_refresh_token()
        except OSError:
            logger.exception("Refresh token generation failed for user id=%s", user.id)
            raise InternalFailure(_AUTH_FAILED) from None
        row = RefreshToken(
            user_id=user.id or "",
            token_hash=self._issuer.hash_refresh_token(secret),
            expires_at=self._issuer.refresh_expiry(now),
            created_at=now,
        )
        with _store_call(_AUTH_FAILED, "refresh token insert"):
            self._refresh_tokens.save(row)
        return secret

    def _start_session(self, user: User, now: datetime) -> AuthResult:
        access_token = self._mint_access_token(user)
        refresh_token = self._store_refresh_token(user, now)
        return AuthResult(user=user.to_public(), access_token=access_token, refresh_token=refresh_token)

    def _best_effort(self, action: str, fn: Callable[..., object], *args: object) -> bool:
        """Run a side effect whose failure must not change the response."""
        try:
            fn(*args)
        except SQLAlchemyError:
            logger.exception("Failed to %s", action)
            return False
        return True
