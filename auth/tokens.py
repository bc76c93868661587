"""
auth/tokens.py -- Access token signing/verification and refresh token minting.

Security design decisions:
  Access tokens: python-jose with HS256. Claims are sub, roles, iat, nbf,
       exp (15 minutes), iss ("assetra") and jti. decode_access_token() reads
       the unverified header first and refuses any alg other than the
       configured HMAC algorithm, so "none" and asymmetric-key confusion
       tokens never reach the verifier. Expiry is then checked twice: once by
       jose against wall-clock time, once here against the issuer's clock.

  Refresh tokens: secrets.token_hex(32) gives 256 bits of entropy. Only the
       SHA-256 digest is stored. bcrypt's intentional slowness is unnecessary
       for a high-entropy secret and would rule out lookup by digest equality.

  Signing material: TokenConfig is a frozen value built once at startup from
       core.config.Settings and passed into TokenIssuer. There is no module
       level secret; a second issuer with a different config is just another
       object.

Layer rule: no imports from api/. core/ is imported only by TokenConfig.from_settings().
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from jose import JWTError, jwt

from auth.errors import InvalidToken
from auth.models import TokenPayload

if TYPE_CHECKING:
    from core.config import Settings

logger = logging.getLogger("assetra.auth")

Clock = Callable[[], datetime]

MIN_SECRET_LEN = 32
_HMAC_ALGORITHMS = frozenset({"HS256", "HS384", "HS512"})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TokenConfig:
    """Immutable signing configuration shared by every request."""

    secret_key: str
    issuer: str = "assetra"
    algorithm: str = "HS256"
    access_ttl: timedelta = timedelta(minutes=15)
    refresh_ttl: timedelta = timedelta(days=7)

    def __post_init__(self) -> None:
        if len(self.secret_key) < MIN_SECRET_LEN:
            raise ValueError(f"secret key must be at least {MIN_SECRET_LEN} characters")
        if self.algorithm not in _HMAC_ALGORITHMS:
            raise ValueError(f"unsupported signing algorithm: {self.algorithm}")

    def __repr__(self) -> str:
        return f"TokenConfig(issuer={self.issuer!r}, algorithm={self.algorithm!r})"

    @classmethod
    def from_settings(cls, settings: Settings) -> TokenConfig:
        return cls(
            secret_key=settings.secret_key,
            issuer=settings.token_issuer,
            access_ttl=timedelta(seconds=settings.access_token_expire_seconds),
            refresh_ttl=timedelta(seconds=settings.refresh_token_expire_seconds),
        )


# ---------------------------------------------------------------------------
# Refresh token helpers
# ---------------------------------------------------------------------------


def generate_refresh_token() -> str:
    """Return a new opaque refresh secret: 32 random bytes as 64 hex chars."""
    return secrets.token_hex(32)


def hash_refresh_token(secret: str) -> str:
    """Return the SHA-256 hex digest used as the refresh token lookup key."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


# ---------------------------------------------------------------------------
# Issuer
# ---------------------------------------------------------------------------


class TokenIssuer:
    """Mints and verifies tokens for one TokenConfig.

    clock is injectable so tests can move time forward; it must return an
    aware UTC datetime.
    """

    def __init__(self, config: TokenConfig, clock: Clock = utcnow) -> None:
        self.config = config
        self._clock = clock

    def now(self) -> datetime:
        return self._clock()

    def issue_access_token(self, user_id: str, roles: list[str]) -> str:
        now = self._clock()
        issued = int(now.timestamp())
        claims: dict[str, Any] = {
            "sub": user_id,
            "roles": list(roles),
            "iat": issued,
            "nbf": issued,
            "exp": int((now + self.config.access_ttl).timestamp()),
            "iss": self.config.issuer,
            "jti": user_id,
        }
        return jwt.encode(claims, self.config.secret_key, algorithm=self.config.algorithm)

    def issue_refresh_token(self) -> str:
        return generate_refresh_token()

    def hash_refresh_token(self, secret: str) -> str:
        return hash_refresh_token(secret)

    def refresh_expiry(self, issued_at: datetime) -> datetime:
        return issued_at + self.config.refresh_ttl

    def decode_access_token(self, token: str) -> TokenPayload:
        """Verify a signed access token and return its payload.

        Raises InvalidToken on a malformed token, an unexpected alg header,
        a bad signature, a wrong issuer, a missing subject, or expiry.
        """
        try:
            header = jwt.get_unverified_header(token)
        except JWTError:
            raise InvalidToken() from None
        if header.get("alg") != self.config.algorithm:
            logger.warning("Rejected access token with unexpected alg header: %r", header.get("alg"))
            raise InvalidToken()

        try:
            claims = jwt.decode(
                token,
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                issuer=self.config.issuer,
            )
        except JWTError:
            raise InvalidToken() from None

        user_id = claims.get("sub")
        if not isinstance(user_id, str) or not user_id:
            raise InvalidToken("invalid user ID in token")

        raw_roles = claims.get("roles")
        roles = [r for r in raw_roles if isinstance(r, str)] if isinstance(raw_roles, list) else []

        try:
            issued_at = datetime.fromtimestamp(int(claims["iat"]), tz=timezone.utc)
            expires_at = datetime.fromtimestamp(int(claims["exp"]), tz=timezone.utc)
        except (KeyError, TypeError, ValueError):
            raise InvalidToken() from None

        # jose has already checked exp against wall-clock time; this repeats
        # the check against the issuer's clock.
        if expires_at <= self._clock():
            raise InvalidToken("token expired")

        return TokenPayload(user_id=user_id, roles=roles, issued_at=issued_at, expires_at=expires_at)


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------

REFRESH_COOKIE_NAME = "refresh_token"


def set_refresh_cookie(response, secret: str, max_age: int, secure: bool = False) -> None:
    """Write the refresh secret as an httpOnly cookie on the response.

    httponly=True: JS cannot read the cookie (XSS mitigation).
    samesite="strict": never sent on cross-site requests, so the refresh
        endpoint cannot be driven from another origin.
    secure: only sent over HTTPS when SECURE_COOKIES=true (set in production).
    max_age: matches the refresh token lifetime.
    """
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        value=secret,
        path="/",
        httponly=True,
        samesite="strict",
        secure=secure,
        max_age=max_age,
    )


def clear_refresh_cookie(response) -> None:
    response.delete_cookie(REFRESH_COOKIE_NAME, path="/", httponly=True, samesite="strict")
