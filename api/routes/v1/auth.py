"""
api/routes/v1/auth.py -- Authentication and user management REST endpoints.

Routes:
  POST   /api/v1/signup           -- create account; sets refresh cookie
  POST   /api/v1/signin           -- password login; sets refresh cookie
  POST   /api/v1/refresh-token    -- rotate refresh cookie; new access token
  POST   /api/v1/logout           -- revoke refresh token; clear cookie
  GET    /api/v1/users            -- list all users (admin only)
  GET    /api/v1/users/{user_id}  -- get user (self or admin)
  PUT    /api/v1/users/{user_id}  -- update name/email/password (self or admin)
  DELETE /api/v1/users/{user_id}  -- delete user (self or admin); 204

Security:
  POST /signin and /signup are rate-limited per IP (LOGIN_RATE_LIMIT).
  Access tokens go in the JSON body; refresh tokens only ever travel in the
  httpOnly, SameSite=strict refresh_token cookie.
  Cache-Control: no-store on every response that carries a credential.
  AuthError subclasses raised by the service are turned into the error
  envelope by the handler in api/main.py.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    AccessTokenResponse,
    AuthResponse,
    MessageResponse,
    SignInRequest,
    SignUpRequest,
    UserResponse,
    UserUpdateRequest,
)
from auth.dependencies import authorize_user_access, get_auth_service, require_admin
from auth.models import AuthResult, SignUpCandidate, TokenPayload, UserChanges
from auth.tokens import REFRESH_COOKIE_NAME, clear_refresh_cookie, set_refresh_cookie
from core.config import get_settings

# Auth policy:
# - POST   /signup, /signin, /refresh-token, /logout: public
# - GET    /users:                                   requires admin (require_admin)
# - GET/PUT/DELETE /users/{user_id}:                 self or admin (authorize_user_access)
router = APIRouter()


def _set_cookie(response: Response, secret: str) -> None:
    settings = get_settings()
    set_refresh_cookie(
        response,
        secret,
        max_age=settings.refresh_token_expire_seconds,
        secure=settings.secure_cookies,
    )


def _session_response(result: AuthResult) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=AuthResponse(
            user=UserResponse.from_public(result.user),
            access_token=result.access_token,
        ).model_dump(mode="json"),
    )
    _set_cookie(resp, result.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/signup", response_model=AuthResponse)
def signup(request: Request, body: SignUpRequest) -> JSONResponse:
    """Create an account and start a session."""
    result = get_auth_service(request).sign_up(
        SignUpCandidate(name=body.name, email=body.email, password=body.password)
    )
    return _session_response(result)


@limiter.limit(login_rate_limit)
@router.post("/signin", response_model=AuthResponse)
def signin(request: Request, body: SignInRequest) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email and wrong password produce the same "invalid credentials"
    error. A locked account produces "account locked" before any password check.
    """
    result = get_auth_service(request).sign_in(body.email, body.password)
    return _session_response(result)


@router.post("/refresh-token", response_model=AccessTokenResponse)
def refresh_token(request: Request) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and rotate the cookie."""
    secret = request.cookies.get(REFRESH_COOKIE_NAME, "")
    if not secret:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "refresh token not found"},
        )
    pair = get_auth_service(request).refresh_token(secret)
    resp = JSONResponse(content=AccessTokenResponse(access_token=pair.access_token).model_dump())
    _set_cookie(resp, pair.refresh_token)
    resp.headers["Cache-Control"] = "no-store"
    return resp


@router.post("/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Revoke the refresh token (if any) and clear the cookie."""
    get_auth_service(request).logout(request.cookies.get(REFRESH_COOKIE_NAME, ""))
    resp = JSONResponse(content=MessageResponse(message="logged out successfully").model_dump())
    clear_refresh_cookie(resp)
    return resp


# ---------------------------------------------------------------------------
# User management (authenticated)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, _admin: TokenPayload = Depends(require_admin)) -> list[UserResponse]:
    """List every user. Admin only."""
    return [UserResponse.from_public(u) for u in get_auth_service(request).list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(
    request: Request,
    user_id: str,
    _caller: TokenPayload = Depends(authorize_user_access),
) -> UserResponse:
    return UserResponse.from_public(get_auth_service(request).get_user(user_id))


@router.put("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: str,
    body: UserUpdateRequest,
    _caller: TokenPayload = Depends(authorize_user_access),
) -> UserResponse:
    """Update name, email and/or password. Roles cannot be changed here."""
    changes = UserChanges(name=body.name, email=body.email, password=body.password)
    return UserResponse.from_public(get_auth_service(request).update_user(user_id, changes))


@router.delete("/users/{user_id}", status_code=204)
def delete_user(
    request: Request,
    user_id: str,
    caller: TokenPayload = Depends(authorize_user_access),
) -> Response:
    """Delete a user. Deleting your own account also clears the refresh cookie."""
    get_auth_service(request).delete_user(user_id)
    resp = Response(status_code=204)
    if caller.user_id == user_id:
        clear_refresh_cookie(resp)
    return resp
