"""
auth/validators.py -- Credential syntax checks and input normalization.

Pure functions, no I/O. Each validate_* function raises a ValidationError
subclass describing the first rule the input breaks and returns None when the
input is acceptable.

Check order for sign-up is email, then name, then password, so a request with
several problems always reports the same one.

Layer rule: imports only auth.errors and stdlib.
"""

from __future__ import annotations

import re
import unicodedata
import uuid
from typing import TYPE_CHECKING

from auth.errors import InvalidIdentifier, NoFieldsProvided, ValidationError, WeakPassword

if TYPE_CHECKING:
    from auth.models import SignUpCandidate, UserChanges

EMAIL_MAX_LEN = 100
NAME_MIN_LEN = 2
NAME_MAX_LEN = 50
PASSWORD_MIN_LEN = 8
PASSWORD_MAX_LEN = 128

# Characters stripped from names and rejected at validation time (markup / quoting).
_NAME_FORBIDDEN = "<>&\"'"

_EMAIL_RE = re.compile(r"[a-zA-Z0-9._%+\-]+@[a-zA-Z0-9.\-]+\.[a-zA-Z]{2,}")


# ---------------------------------------------------------------------------
# Field validators
# ---------------------------------------------------------------------------


def validate_email(email: str) -> None:
    if not email:
        raise ValidationError("invalid email format")
    if len(email) > EMAIL_MAX_LEN:
        raise ValidationError(f"email must be at most {EMAIL_MAX_LEN} characters")
    if not _EMAIL_RE.fullmatch(email):
        raise ValidationError("invalid email format")


def validate_name(name: str) -> None:
    trimmed = name.strip()
    if not trimmed:
        raise ValidationError("invalid name format")
    if len(trimmed) < NAME_MIN_LEN:
        raise ValidationError(f"name must be at least {NAME_MIN_LEN} characters")
    if len(trimmed) > NAME_MAX_LEN:
        raise ValidationError(f"name must be at most {NAME_MAX_LEN} characters")
    if any(ch in trimmed for ch in _NAME_FORBIDDEN):
        raise ValidationError("name contains invalid characters")


def validate_password(password: str) -> None:
    """Enforce the password strength policy.

    Length 8-128, plus at least one uppercase letter, one lowercase letter,
    one digit and one punctuation or symbol character. Character classes use
    Unicode categories, so non-ASCII letters and symbols count.
    """
    if not password:
        raise ValidationError("invalid password format")
    if len(password) < PASSWORD_MIN_LEN:
        raise WeakPassword()
    if len(password) > PASSWORD_MAX_LEN:
        raise WeakPassword("password is too long")

    has_upper = has_lower = has_digit = has_special = False
    for ch in password:
        category = unicodedata.category(ch)
        if ch.isupper():
            has_upper = True
        elif ch.islower():
            has_lower = True
        elif category.startswith("N"):
            has_digit = True
        elif category.startswith(("P", "S")):
            has_special = True

    if not (has_upper and has_lower and has_digit and has_special):
        raise WeakPassword()


def validate_user_id(user_id: str) -> None:
    """Reject anything that is not a UUID string."""
    try:
        uuid.UUID(str(user_id))
    except (TypeError, ValueError):
        raise InvalidIdentifier() from None


# ---------------------------------------------------------------------------
# Composite validators
# ---------------------------------------------------------------------------


def validate_sign_up(candidate: SignUpCandidate) -> None:
    validate_email(candidate.email)
    validate_name(candidate.name)
    validate_password(candidate.password)


def validate_update(changes: UserChanges) -> None:
    """Validate only the fields the caller supplied.

    An empty string counts as "not supplied". At least one field is required.
    """
    if not (changes.email or changes.name or changes.password):
        raise NoFieldsProvided()
    if changes.email:
        validate_email(changes.email)
    if changes.name:
        validate_name(changes.name)
    if changes.password:
        validate_password(changes.password)


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def normalize_email(email: str) -> str:
    return email.strip().lower()


def sanitize_name(name: str) -> str:
    """Trim and strip markup characters. Idempotent."""
    cleaned = name.strip()
    for ch in _NAME_FORBIDDEN:
        cleaned = cleaned.replace(ch, "")
    return cleaned
