"""
FastAPI dependency injection functions.

Provides Redis connections, the current session/user, and organization role
enforcement through the authorization gate.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.core.security import blacklist_redis_key, decode_access_token
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization
from app.models.user import User
from app.services.authorization_service import (
    NOT_A_MEMBER,
    Allowed,
    AuthorizationGate,
)

# ---------------------------------------------------------------------------
# HTTP Bearer scheme (auto_error=False so we can return custom 401)
# ---------------------------------------------------------------------------

bearer_scheme = HTTPBearer(auto_error=False)

# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------

def create_redis_client() -> aioredis.Redis:
    """Build the async Redis client. Called once at startup."""
    return aioredis.from_url(
        str(settings.REDIS_URL),
        encoding="utf-8",
        decode_responses=True,
    )


async def get_redis(request: Request) -> aioredis.Redis:
    """Return the Redis client the application built at startup."""
    return request.app.state.redis


# ---------------------------------------------------------------------------
# Current session / user
# ---------------------------------------------------------------------------

@dataclass
class CurrentSession:
    """Authenticated user plus the session and token the request carries."""

    user: User
    session_id: str
    token_jti: str


def _unauthorized(code: str, message: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail={"code": code, "message": message},
        headers={"WWW-Authenticate": "Bearer"},
    )


async def get_current_session(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> CurrentSession:
    """
    Validate the Bearer JWT and return the authenticated session.

    Raises 401 if:
    - No token provided
    - Token is invalid or expired
    - JTI is blacklisted
    - User does not exist or is inactive
    """
    if credentials is None:
        raise _unauthorized("MISSING_TOKEN", "Authorization header required")

    try:
        payload = decode_access_token(credentials.credentials)
        user_id = UUID(payload["sub"])
    except (JWTError, ValueError):
        raise _unauthorized("INVALID_TOKEN", "Token is invalid or expired")

    jti: str = payload.get("jti", "")
    if await redis.exists(blacklist_redis_key(jti)):
        raise _unauthorized("TOKEN_REVOKED", "Token has been revoked")

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None or not user.is_active:
        raise _unauthorized("USER_NOT_FOUND", "User not found or inactive")

    return CurrentSession(user=user, session_id=payload["sid"], token_jti=jti)


async def get_current_user(
    current: CurrentSession = Depends(get_current_session),
) -> User:
    """Return only the authenticated User."""
    return current.user


# ---------------------------------------------------------------------------
# Organization membership + role enforcement
# ---------------------------------------------------------------------------

def get_authorization_gate(db: AsyncSession = Depends(get_db)) -> AuthorizationGate:
    return AuthorizationGate(db)


def require_role(min_role: MemberRole):
    """
    Dependency factory that enforces a minimum role in the ``{org_id}`` organization.

    A missing organization and a missing membership produce the same 403 body.

    Usage:
        @router.patch("/{org_id}")
        async def endpoint(
            org_and_member: tuple[Organization, OrgMember] = Depends(
                require_role(MemberRole.ADMIN)
            ),
        ):
            org, member = org_and_member
    """

    async def role_checker(
        org_id: UUID,
        current_user: User = Depends(get_current_user),
        gate: AuthorizationGate = Depends(get_authorization_gate),
        db: AsyncSession = Depends(get_db),
    ) -> tuple[Organization, OrgMember]:
        decision = await gate.authorize(current_user.id, org_id, min_role)
        if not isinstance(decision, Allowed):
            if decision.reason == NOT_A_MEMBER:
                raise HTTPException(
                    status_code=status.HTTP_403_FORBIDDEN,
                    detail={
                        "code": "NOT_A_MEMBER",
                        "message": "You are not a member of this organization",
                    },
                )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "INSUFFICIENT_ROLE",
                    "message": f"Required role: {min_role.value} or higher",
                },
            )

        org = await db.get(Organization, org_id)
        return org, decision.membership

    return role_checker


get_org_member = require_role(MemberRole.VIEWER)
