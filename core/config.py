"""
core/config.py -- Assetra auth settings, read from the environment.

Every tunable (signing key, database URL, token lifetimes, bcrypt cost, rate
limit, CORS and host allow-lists) is a field on Settings. Env var names are
the upper-cased field names; a .env file in the working directory is also
read. get_settings() builds the object on first use and caches it.

SECRET_KEY policy:
  DEBUG=true with no key: a random key is generated and a warning logged.
      Tokens signed with it die with the process.
  DEBUG unset/false with no key: Settings() raises, so the gateway and the
      CLI refuse to start.
  Any key under 32 characters is rejected.

The signing values are copied into auth.tokens.TokenConfig once at startup;
changing the environment afterwards has no effect on a running process.

Layer rule: core/ may not import from api/ or auth/.
"""

import logging
import secrets
from functools import lru_cache
from pathlib import Path

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger("assetra.config")

_DEFAULT_DB_URL = f"sqlite:///{Path(__file__).resolve().parent.parent / 'assetra_auth.db'}"


class Settings(BaseSettings):
    """Typed view of the environment.

    Every field has a default, so tests only need DEBUG=true to build one.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    debug: bool = False
    # "" means unset; validate_secret_key replaces it or raises.
    secret_key: str = ""

    # ------------------------------------------------------------------
    # Database
    # ------------------------------------------------------------------

    database_url: str = _DEFAULT_DB_URL
    db_statement_timeout_seconds: float = 5.0

    # ------------------------------------------------------------------
    # Auth
    # ------------------------------------------------------------------

    token_issuer: str = "assetra"
    access_token_expire_seconds: int = 15 * 60
    refresh_token_expire_seconds: int = 7 * 24 * 60 * 60
    bcrypt_rounds: int = 12
    secure_cookies: bool = False

    # ------------------------------------------------------------------
    # HTTP gateway
    # ------------------------------------------------------------------

    login_rate_limit: str = "10/minute"
    cors_origins: list[str] = ["http://localhost:3000"]
    allowed_hosts: list[str] = ["localhost", "127.0.0.1", "*.localhost", "testserver"]

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("database_url")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("DATABASE_URL must be set and non-empty")
        return v.strip()

    @field_validator("db_statement_timeout_seconds")
    @classmethod
    def validate_statement_timeout(cls, v: float) -> float:
        if v <= 0 or v > 60:
            raise ValueError("DB_STATEMENT_TIMEOUT_SECONDS must be greater than 0 and at most 60")
        return v

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_bcrypt_rounds(cls, v: int) -> int:
        if v < 4 or v > 31:
            raise ValueError("BCRYPT_ROUNDS must be between 4 and 31")
        return v

    @field_validator("access_token_expire_seconds", "refresh_token_expire_seconds")
    @classmethod
    def validate_expiry(cls, v: int) -> int:
        if v < 1:
            raise ValueError("token lifetimes must be at least one second")
        return v

    @model_validator(mode="after")
    def validate_secret_key(self) -> "Settings":
        """Generate a dev key, or refuse to run without one; reject short keys."""
        if not self.secret_key:
            if self.debug:
                self.secret_key = secrets.token_hex(32)
                logger.warning("WARNING: Using auto-generated SECRET_KEY. Tokens will not persist across restarts.")
            else:
                raise ValueError(
                    "SECRET_KEY is required when DEBUG is off. "
                    "Export SECRET_KEY (32+ characters) or set DEBUG=true for local development."
                )
        if len(self.secret_key) < 32:
            raise ValueError("SECRET_KEY must be at least 32 characters long.")
        return self


@lru_cache
def get_settings() -> Settings:
    """Cached Settings. Tests that change env vars call get_settings.cache_clear()."""
    return Settings()
