"""
Authentication schemas.

Request/response models for registration, login, token refresh, logout and
the current-user profile.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field

from app.models.member import MemberRole
from app.models.organization import OrganizationType

USERNAME_REGEX = r"^[a-z0-9.]+$"


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

class RegisterRequest(BaseModel):
    """Request body for POST /auth/register."""

    name: str = Field(min_length=2, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8, max_length=128)
    username: str | None = Field(
        default=None, min_length=3, max_length=20, pattern=USERNAME_REGEX
    )


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class LoginRequest(BaseModel):
    """Request body for POST /auth/login."""

    email: EmailStr
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """Response for login and token refresh."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(description="Access token TTL in seconds")


# ---------------------------------------------------------------------------
# Refresh / Logout
# ---------------------------------------------------------------------------

class RefreshRequest(BaseModel):
    """Request body for POST /auth/refresh."""

    refresh_token: str


class LogoutRequest(BaseModel):
    """Request body for POST /auth/logout."""

    refresh_token: str


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------

class UserResponse(BaseModel):
    """Public user representation returned in API responses."""

    id: UUID
    email: str
    username: str | None
    name: str | None
    image_url: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class RegisterResponse(BaseModel):
    """Response for POST /auth/register: the new user plus a token pair."""

    user: UserResponse
    tokens: TokenResponse
    message: str


class MembershipSummary(BaseModel):
    """One organization the user belongs to."""

    id: UUID
    role: MemberRole
    organization_id: UUID
    organization_name: str
    organization_type: OrganizationType


class MeResponse(BaseModel):
    """Response for GET /auth/me: profile, memberships and active organization."""

    user: UserResponse
    memberships: list[MembershipSummary]
    active_organization_id: UUID | None
