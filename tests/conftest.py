"""
tests/conftest.py -- Shared test fixtures for the Assetra auth tests.

This module provides:
  - FakeClock: a settable clock injected into TokenIssuer
  - service: AuthService over the in-memory stores, for unit tests
  - _patch_lifespan(): wires a test AuthService into app.state, bypassing real startup
  - api_client: TestClient plus an admin user and its access token

Design: The gateway fixture uses a named shared-memory SQLite URI (not plain
:memory:) because TestClient runs route handlers in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. The named URI format shares one in-memory instance across all
connections in the same process.

FakeClock starts at the real current time. python-jose checks nbf and exp
against wall-clock time, so a clock started in the past or future would make
freshly issued tokens fail verification for reasons unrelated to the test.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import NamedTuple

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.memory import InMemoryRefreshTokenStore, InMemoryUserStore
from auth.models import SignUpCandidate
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import TokenConfig, TokenIssuer

# Rate limits would turn the repeated sign-in calls below into 429s.
limiter.enabled = False

TEST_SECRET = "assetra-test-signing-key-0123456789abcdef"
STRONG_PASSWORD = "Str0ng!Pass"


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime.now(timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, **kwargs: float) -> None:
        self.current += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Unit-test fixtures -- fresh in-memory stores per test
# ---------------------------------------------------------------------------


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    """bcrypt at the minimum cost factor; production uses BCRYPT_ROUNDS=12."""
    return PasswordHasher(rounds=4)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def issuer(clock: FakeClock) -> TokenIssuer:
    return TokenIssuer(TokenConfig(secret_key=TEST_SECRET), clock=clock)


@pytest.fixture
def users() -> InMemoryUserStore:
    return InMemoryUserStore()


@pytest.fixture
def refresh_tokens() -> InMemoryRefreshTokenStore:
    return InMemoryRefreshTokenStore()


@pytest.fixture
def service(
    users: InMemoryUserStore,
    refresh_tokens: InMemoryRefreshTokenStore,
    issuer: TokenIssuer,
    hasher: PasswordHasher,
) -> AuthService:
    return AuthService(users=users, refresh_tokens=refresh_tokens, issuer=issuer, hasher=hasher)


# ---------------------------------------------------------------------------
# Gateway fixtures
# ---------------------------------------------------------------------------


class ApiHarness(NamedTuple):
    client: TestClient
    admin_token: str
    admin_id: str
    users: UserStore
    service: AuthService


def _patch_lifespan(service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    Wires the pre-built test service into app.state so TestClient routes use
    the isolated test DB rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api_client(hasher: PasswordHasher) -> Generator[ApiHarness, None, None]:
    """Yield an ApiHarness for gateway integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan, so tests
    hit real middleware, dependencies and route handlers backed by real
    SQLAlchemy stores. An admin user ("admin@example.com") is created before
    the client starts; its role is granted through the store because the API
    never grants roles.
    """
    engine = make_engine("sqlite:///file:test_auth_api?mode=memory&cache=shared&uri=true")
    users = UserStore(engine)
    service = AuthService(
        users=users,
        refresh_tokens=RefreshTokenStore(engine),
        issuer=TokenIssuer(TokenConfig(secret_key=TEST_SECRET)),
        hasher=hasher,
    )

    admin = service.sign_up(SignUpCandidate(name="Test Admin", email="admin@example.com", password=STRONG_PASSWORD))
    users.set_roles(admin.user.id, ["user", "admin"])
    token = service.issuer.issue_access_token(admin.user.id, ["user", "admin"])

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiHarness(client=client, admin_token=token, admin_id=admin.user.id, users=users, service=service)

    engine.dispose()
