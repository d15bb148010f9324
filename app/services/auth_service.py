"""
Authentication business logic.

Handles user registration (with username allocation), login, token refresh,
logout and the current-user profile.
Routers only handle HTTP concerns.
"""

from __future__ import annotations

import logging
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from jose import JWTError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import (
    blacklist_redis_key,
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
    hash_password,
    new_session_id,
    refresh_token_redis_key,
    verify_password,
)
from app.models.member import OrgMember
from app.models.organization import Organization
from app.models.user import User
from app.schemas.auth import (
    LoginRequest,
    MembershipSummary,
    MeResponse,
    RegisterRequest,
    RegisterResponse,
    TokenResponse,
    UserResponse,
)
from app.services.session_service import ActiveOrganizationService
from app.services.username_service import UsernameService

logger = logging.getLogger(__name__)


class AuthService:
    """Handles all authentication operations."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.usernames = UsernameService(db)
        self.sessions = ActiveOrganizationService(db, redis)

    # -----------------------------------------------------------------------
    # Register
    # -----------------------------------------------------------------------

    async def register(self, data: RegisterRequest) -> RegisterResponse:
        """
        Register a new user.

        - Validates email uniqueness
        - Uses the provided username if free, otherwise allocates one
        - Issues JWT tokens
        """
        email = data.email.lower()
        if await self._email_taken(email):
            raise self._email_conflict()

        user = User(
            email=email,
            name=data.name,
            password_hash=hash_password(data.password),
        )

        if data.username is not None:
            if await self.usernames.is_taken(data.username):
                raise self._username_conflict()
            try:
                async with self.db.begin_nested():
                    user.username = data.username
                    self.db.add(user)
                    await self.db.flush()
            except IntegrityError:
                if await self._email_taken(email):
                    raise self._email_conflict()
                raise self._username_conflict()
        else:
            try:
                await self.usernames.claim_username(user, name=data.name, email=email)
            except IntegrityError:
                # Not a username collision; the email lost a race
                raise self._email_conflict()

        await self.db.refresh(user)
        logger.info("Registered user_id=%s username=%s", user.id, user.username)

        tokens = await self._issue_tokens(user)
        return RegisterResponse(
            user=UserResponse.model_validate(user),
            tokens=tokens,
            message=f"Account created successfully with username @{user.username}",
        )

    # -----------------------------------------------------------------------
    # Login
    # -----------------------------------------------------------------------

    async def login(self, data: LoginRequest) -> TokenResponse:
        """
        Authenticate user with email + password.

        Raises 401 for invalid credentials (never reveals which field is wrong).
        """
        result = await self.db.execute(
            select(User).where(User.email == data.email.lower())
        )
        user = result.scalar_one_or_none()

        if (
            user is None
            or user.password_hash is None
            or not verify_password(data.password, user.password_hash)
        ):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_CREDENTIALS", "message": "Invalid email or password"},
            )

        if not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ACCOUNT_DISABLED", "message": "Account is disabled"},
            )

        return await self._issue_tokens(user)

    # -----------------------------------------------------------------------
    # Refresh
    # -----------------------------------------------------------------------

    async def refresh(self, refresh_token: str) -> TokenResponse:
        """
        Exchange a valid refresh token for a new token pair.

        Rotates the refresh token and keeps the session id, so the session's
        active organization survives the refresh.
        """
        try:
            payload = decode_refresh_token(refresh_token)
            user_id = UUID(payload.get("sub", ""))
        except (JWTError, ValueError):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "INVALID_TOKEN", "message": "Refresh token is invalid or expired"},
            )

        jti: str = payload.get("jti", "")
        redis_key = refresh_token_redis_key(str(user_id), jti)
        if not await self.redis.exists(redis_key):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "TOKEN_REVOKED", "message": "Refresh token has been revoked"},
            )

        user = await self.db.get(User, user_id)
        if user is None or not user.is_active:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail={"code": "USER_NOT_FOUND", "message": "User not found or inactive"},
            )

        await self.redis.delete(redis_key)
        return await self._issue_tokens(user, session_id=payload.get("sid"))

    # -----------------------------------------------------------------------
    # Logout
    # -----------------------------------------------------------------------

    async def logout(
        self, user: User, session_id: str, access_token_jti: str, refresh_token: str
    ) -> None:
        """
        Logout by:
        - Blacklisting the access token JTI
        - Deleting the refresh token from Redis
        - Dropping the session's active organization
        """
        await self.redis.setex(
            blacklist_redis_key(access_token_jti),
            settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
            "1",
        )

        try:
            payload = decode_refresh_token(refresh_token)
        except JWTError:
            # Expired refresh token: nothing left to delete
            payload = None
        if payload is not None and payload.get("sub") == str(user.id):
            await self.redis.delete(
                refresh_token_redis_key(payload["sub"], payload.get("jti", ""))
            )

        await self.sessions.forget_session(user.id, session_id)

    # -----------------------------------------------------------------------
    # Me
    # -----------------------------------------------------------------------

    async def get_me(self, user: User, session_id: str) -> MeResponse:
        """Return profile, memberships and the session's active organization."""
        result = await self.db.execute(
            select(OrgMember, Organization)
            .join(Organization, OrgMember.org_id == Organization.id)
            .where(OrgMember.user_id == user.id)
            .order_by(OrgMember.joined_at)
        )
        memberships = [
            MembershipSummary(
                id=member.id,
                role=member.role,
                organization_id=org.id,
                organization_name=org.name,
                organization_type=org.type,
            )
            for member, org in result.all()
        ]

        active = await self.sessions.get_active_organization(user.id, session_id)
        return MeResponse(
            user=UserResponse.model_validate(user),
            memberships=memberships,
            active_organization_id=active.organization.id if active else None,
        )

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _email_taken(self, email: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.email == email))
        return result.first() is not None

    @staticmethod
    def _email_conflict() -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "EMAIL_TAKEN", "message": "User with this email already exists"},
        )

    @staticmethod
    def _username_conflict() -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"code": "USERNAME_TAKEN", "message": "This username is already taken"},
        )

    async def _issue_tokens(self, user: User, session_id: str | None = None) -> TokenResponse:
        """
        Create and store an access + refresh token pair for a user.

        A new session id is minted unless an existing one is carried over.
        """
        user_id = str(user.id)
        session_id = session_id or new_session_id()

        refresh_token, refresh_jti = create_refresh_token(user_id, session_id)
        access_token = create_access_token(user_id, session_id)

        ttl_seconds = settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60
        await self.redis.setex(
            refresh_token_redis_key(user_id, refresh_jti),
            ttl_seconds,
            "1",
        )
        await self.sessions.register_session(user.id, session_id)

        return TokenResponse(
            access_token=access_token,
            refresh_token=refresh_token,
            expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        )
