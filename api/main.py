"""
api/main.py -- FastAPI gateway for the Assetra auth service.

Translates REST calls into AuthService operations. The gateway owns HTTP
concerns only (cookies, bearer extraction, status codes, CORS, headers);
every credential decision is made in auth/.

Run with:      uvicorn asgi:app --reload

Middleware stack (outermost to innermost; Starlette wraps the last-registered
middleware around everything registered before it):
  1. log_requests          -- method, path, status and latency per request
  2. security_headers      -- clickjacking / sniffing / CSP response headers
  3. SlowAPIMiddleware     -- enforces per-route rate limits from api.limiter
  4. CORSMiddleware        -- adds CORS headers for allowed browser origins
  5. TrustedHostMiddleware -- rejects requests with unexpected Host headers

Lifespan builds the engine, both stores and the AuthService on startup and
disposes the engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy.engine import Engine

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.v1.auth import router as auth_router
from auth.errors import (
    AccountLocked,
    AuthError,
    DuplicateUser,
    InternalFailure,
    InvalidCredentials,
    InvalidIdentifier,
    InvalidRefreshToken,
    InvalidToken,
    NotFound,
    ValidationError,
)
from auth.passwords import PasswordHasher
from auth.service import AuthService
from auth.store import RefreshTokenStore, UserStore, make_engine
from auth.tokens import TokenConfig, TokenIssuer
from core.config import get_settings

API_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("assetra.api")

_settings = get_settings()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


def build_auth_service(engine: Engine) -> AuthService:
    """Wire the production AuthService from settings over a shared engine."""
    return AuthService(
        users=UserStore(engine),
        refresh_tokens=RefreshTokenStore(engine),
        issuer=TokenIssuer(TokenConfig.from_settings(_settings)),
        hasher=PasswordHasher(rounds=_settings.bcrypt_rounds),
    )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the auth service on startup; dispose the DB engine on shutdown.

    A SECRET_KEY or DATABASE_URL problem raises here, so the process fails
    to start instead of serving requests it cannot authenticate.
    """
    logger.info("Assetra auth gateway starting up")
    app.state.engine = make_engine(_settings.database_url, _settings.db_statement_timeout_seconds)
    app.state.auth_service = build_auth_service(app.state.engine)
    logger.info("Auth service initialized (issuer=%s)", _settings.token_issuer)

    yield

    app.state.engine.dispose()
    logger.info("Assetra auth gateway shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Assetra Auth API",
    description="Sign-up, sign-in, token refresh and user management.",
    version=API_VERSION,
    lifespan=lifespan,
    # Swagger/ReDoc load assets from a CDN, which the CSP below forbids.
    docs_url=None,
    redoc_url=None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# Each registration wraps the ones before it, so the request meets these in
# reverse order: SlowAPI -> CORS -> TrustedHost.
# ---------------------------------------------------------------------------

app.add_middleware(
    TrustedHostMiddleware,
    allowed_hosts=_settings.allowed_hosts,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPIMiddleware reads the limiter from app.state.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Security headers middleware
# ---------------------------------------------------------------------------

_SECURITY_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'self'; frame-ancestors 'none'; base-uri 'self'; form-action 'self'",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}


@app.middleware("http")
async def security_headers(request: Request, call_next):
    response = await call_next(request)
    for name, value in _SECURITY_HEADERS.items():
        response.headers.setdefault(name, value)
    return response


# ---------------------------------------------------------------------------
# Request logging middleware
#
# Only method, path, status and latency are logged. Query strings, headers
# and bodies may carry credentials and are never written to the log.
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api/v1", tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# Every error leaves as {"error": {"code", "message", "detail"}}.
# Only rate-limit and body-validation errors fill in detail.
# ---------------------------------------------------------------------------

# Checked in order; subclasses before their bases.
_AUTH_ERROR_STATUS: tuple[tuple[type[AuthError], int, str], ...] = (
    (InvalidIdentifier, 400, "invalid_identifier"),
    (ValidationError, 422, "validation_error"),
    (DuplicateUser, 409, "duplicate_user"),
    (InvalidCredentials, 401, "invalid_credentials"),
    (AccountLocked, 423, "account_locked"),
    (InvalidRefreshToken, 401, "invalid_refresh_token"),
    (InvalidToken, 401, "invalid_token"),
    (NotFound, 404, "not_found"),
    (InternalFailure, 500, "internal_error"),
)


def _auth_error_status(exc: AuthError) -> tuple[int, str]:
    for cls, status_code, code in _AUTH_ERROR_STATUS:
        if isinstance(exc, cls):
            return status_code, code
    return 400, "auth_error"


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Return the service's user-facing message with a matching status code.

    InternalFailure messages are already generic ("authentication failed");
    the underlying store or crypto error was logged where it happened.
    """
    status_code, code = _auth_error_status(exc)
    response = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=exc.message)).model_dump(),
    )
    response.headers["Cache-Control"] = "no-store"
    return response


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """429 for /signin or /signup over LOGIN_RATE_LIMIT, with Retry-After."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = JSONResponse(
        status_code=429,
        content=ErrorResponse(
            error=ErrorDetail(
                code="rate_limited",
                message="Too many requests.",
                detail=str(exc),
            )
        ).model_dump(),
    )
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 422 when the request body is not the expected JSON shape."""
    return JSONResponse(
        status_code=422,
        content=ErrorResponse(
            error=ErrorDetail(
                code="validation_error",
                message="Malformed request body.",
                detail=str(exc.errors()),
            )
        ).model_dump(),
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Wrap HTTPException in the error envelope, keeping its headers.

    Dependencies raise HTTPException with a {"code", "message"} dict as
    detail; use it directly as the error field.
    """
    if isinstance(exc.detail, dict):
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": exc.detail},
            headers=exc.headers,
        )
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error=ErrorDetail(
                code=f"http_{exc.status_code}",
                message=str(exc.detail),
            )
        ).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log the traceback and answer 500 without any exception text."""
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error=ErrorDetail(
                code="internal_error",
                message="internal server error",
            )
        ).model_dump(),
    )


# ---------------------------------------------------------------------------
# Health endpoint
# ---------------------------------------------------------------------------


@app.get("/api/v1/health", include_in_schema=True, tags=["Health"])
async def health() -> HealthResponse:
    """Liveness check; touches no store."""
    return HealthResponse(version=API_VERSION)
