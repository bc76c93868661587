"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Access tokens arrive as "Authorization: Bearer <token>". The refresh token
never authenticates a request; it is only read by /refresh-token and /logout.

get_token_payload() verifies the bearer token and returns its TokenPayload.
authorize_user_access() allows a caller to act on their own id, or on any id
when "admin" is in the token's roles.
require_admin() additionally re-reads the caller's stored roles, so an admin
whose role was removed loses list access without waiting for token expiry.

Layer rule: auth/dependencies.py may import from fastapi because this module
is part of the FastAPI dependency injection system. No imports from api/.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, Request

from auth.errors import AuthError, InvalidToken
from auth.models import TokenPayload
from auth.service import AuthService

logger = logging.getLogger("assetra.auth")

ADMIN_ROLE = "admin"

_UNAUTHORIZED = {"code": "unauthorized", "message": "unauthorized"}
_FORBIDDEN = {"code": "forbidden", "message": "access forbidden"}


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def has_role(roles: list[str], role: str) -> bool:
    return role in roles


def get_token_payload(request: Request) -> TokenPayload:
    """Require a valid bearer access token. Raises HTTP 401 otherwise."""
    auth_header = request.headers.get("Authorization", "")
    token = auth_header[7:] if auth_header.startswith("Bearer ") else ""
    if not token:
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"})
    try:
        return get_auth_service(request).issuer.decode_access_token(token)
    except InvalidToken:
        client = request.client.host if request.client else "unknown"
        logger.info("Rejected access token from %s", client)
        raise HTTPException(status_code=401, detail=_UNAUTHORIZED, headers={"WWW-Authenticate": "Bearer"}) from None


def authorize_user_access(request: Request, user_id: str) -> TokenPayload:
    """Allow the user themself or an admin. Raises HTTP 403 for anyone else.

    user_id is taken from the {user_id} path parameter when used as a
    dependency on /users/{user_id} routes.
    """
    payload = get_token_payload(request)
    if payload.user_id != user_id and not has_role(payload.roles, ADMIN_ROLE):
        logger.warning("User %s denied access to user %s", payload.user_id, user_id)
        raise HTTPException(status_code=403, detail=_FORBIDDEN)
    return payload


def require_admin(request: Request) -> TokenPayload:
    """Require "admin" in both the token roles and the caller's stored roles."""
    payload = get_token_payload(request)
    if not has_role(payload.roles, ADMIN_ROLE):
        raise HTTPException(status_code=403, detail=_FORBIDDEN)
    try:
        caller = get_auth_service(request).get_user(payload.user_id)
    except AuthError:
        raise HTTPException(status_code=403, detail=_FORBIDDEN) from None
    if not has_role(caller.roles, ADMIN_ROLE):
        logger.warning("Stale admin token rejected for user %s", payload.user_id)
        raise HTTPException(status_code=403, detail=_FORBIDDEN)
    return payload
