"""
auth/errors.py -- Exception taxonomy for the authentication engine.

Every error raised by auth/ derives from AuthError and carries a message that
is safe to show to the caller. Store and crypto failures never surface their
own text: the service logs them and raises InternalFailure with a generic
message instead.

InvalidCredentials is deliberately used for both "unknown email" and "wrong
password" so callers cannot enumerate accounts. AccountLocked is distinct
because it reveals nothing secret.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for all authentication errors."""

    default_message = "authentication failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(AuthError):
    """Malformed input. The message names the first violated rule."""

    default_message = "invalid input"


class WeakPassword(ValidationError):
    default_message = (
        "password must be at least 8 characters and contain uppercase, lowercase, number and special character"
    )


class NoFieldsProvided(ValidationError):
    default_message = "cannot update user with invalid credentials"


class InvalidIdentifier(ValidationError):
    default_message = "invalid user ID format"


class DuplicateUser(AuthError):
    default_message = "user already exists"


class InvalidCredentials(AuthError):
    default_message = "invalid credentials"


class AccountLocked(AuthError):
    default_message = "account locked due to multiple failed login attempts"


class InvalidToken(AuthError):
    default_message = "invalid token"


class InvalidRefreshToken(InvalidToken):
    default_message = "invalid refresh token"


class NotFound(AuthError):
    default_message = "not found"


class InternalFailure(AuthError):
    """Store or crypto failure. Details are logged, never returned."""

    default_message = "authentication failed"
