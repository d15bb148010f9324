"""
Authentication endpoints.

Register, login, logout, token refresh, me.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

import redis.asyncio as aioredis

from app.core.database import get_db
from app.core.dependencies import CurrentSession, get_current_session, get_redis
from app.schemas.auth import (
    LoginRequest,
    LogoutRequest,
    MeResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
)
from app.services.auth_service import AuthService

router = APIRouter()


def get_auth_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> AuthService:
    """Dependency that constructs AuthService."""
    return AuthService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# Register
# ---------------------------------------------------------------------------

@router.post(
    "/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a new user",
)
async def register(
    data: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> RegisterResponse:
    """
    Create a new user account.

    - Email must be globally unique
    - Username is optional; one is generated from the name or email otherwise
    - Returns the user and JWT access + refresh tokens
    """
    return await service.register(data)


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

@router.post(
    "/login",
    response_model=TokenResponse,
    summary="Login with email and password",
)
async def login(
    data: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    return await service.login(data)


# ---------------------------------------------------------------------------
# Refresh
# ---------------------------------------------------------------------------

@router.post(
    "/refresh",
    response_model=TokenResponse,
    summary="Refresh access token",
)
async def refresh(
    data: RefreshRequest,
    service: AuthService = Depends(get_auth_service),
) -> TokenResponse:
    """
    Exchange a valid refresh token for a new access + refresh token pair.

    Refresh tokens are rotated on every use. The session keeps its active
    organization.
    """
    return await service.refresh(data.refresh_token)


# ---------------------------------------------------------------------------
# Logout
# ---------------------------------------------------------------------------

@router.post(
    "/logout",
    status_code=status.HTTP_200_OK,
    summary="Logout and revoke tokens",
)
async def logout(
    data: LogoutRequest,
    current: CurrentSession = Depends(get_current_session),
    service: AuthService = Depends(get_auth_service),
) -> dict:
    """
    Logout the current session.

    - Blacklists the current access token JTI in Redis
    - Deletes the refresh token from Redis
    - Forgets the session's active organization
    """
    await service.logout(
        user=current.user,
        session_id=current.session_id,
        access_token_jti=current.token_jti,
        refresh_token=data.refresh_token,
    )
    return {}


# ---------------------------------------------------------------------------
# Me
# ---------------------------------------------------------------------------

@router.get(
    "/me",
    response_model=MeResponse,
    summary="Get current user profile",
)
async def get_me(
    current: CurrentSession = Depends(get_current_session),
    service: AuthService = Depends(get_auth_service),
) -> MeResponse:
    """Profile, memberships and the session's active organization."""
    return await service.get_me(current.user, current.session_id)
