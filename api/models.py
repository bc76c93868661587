"""
API request and response models for the Assetra auth gateway.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Field limits here are loose on purpose (generous max_length only to bound
request size). The real credential rules live in auth/validators.py so the
service reports the same messages no matter which caller it serves.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import PublicUser

# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class SignUpRequest(BaseModel):
    """Request body for POST /api/v1/signup."""

    name: str = Field(..., max_length=255)
    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)


class SignInRequest(BaseModel):
    """Request body for POST /api/v1/signin."""

    email: str = Field(..., max_length=255)
    password: str = Field(..., max_length=255)


class UserUpdateRequest(BaseModel):
    """Request body for PUT /api/v1/users/{id}. Omitted or empty fields are left unchanged.

    Unknown fields (including "roles") are ignored: roles are not editable
    through the API.
    """

    name: str = Field(default="", max_length=255)
    email: str = Field(default="", max_length=255)
    password: str = Field(default="", max_length=255)


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class UserResponse(BaseModel):
    """Public user view. Never carries password or lockout fields."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    email: str
    roles: list[str]
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_public(cls, user: PublicUser) -> "UserResponse":
        return cls(
            id=user.id,
            name=user.username,
            email=user.email,
            roles=list(user.roles),
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class AuthResponse(BaseModel):
    """Response for sign-up and sign-in. The refresh token travels in a cookie, not here."""

    model_config = ConfigDict(frozen=True)

    user: UserResponse
    access_token: str
    token_type: str = "bearer"


class AccessTokenResponse(BaseModel):
    """Response for POST /api/v1/refresh-token."""

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
