"""
User directory and username settings.
"""

from __future__ import annotations

import logging

from fastapi import HTTPException, status
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.user import User
from app.schemas.user import (
    GenerateUsernamesResponse,
    UsernameUpdateResponse,
    UsernameValidationResponse,
    UserSearchResponse,
    UserSearchResult,
)
from app.services.username_service import (
    USERNAME_FORMAT_MESSAGE,
    USERNAME_TAKEN_MESSAGE,
    Invalid,
    UsernameService,
    is_username_format_valid,
)

logger = logging.getLogger(__name__)

SEARCH_MIN_QUERY_LENGTH = 2


class UserService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db
        self.usernames = UsernameService(db)

    # -----------------------------------------------------------------------
    # Search
    # -----------------------------------------------------------------------

    async def search_users(self, query: str, caller: User, limit: int = 10) -> UserSearchResponse:
        """
        Case-insensitive match on username, email or name.

        Queries shorter than two characters return nothing. The caller is
        never part of the result.
        """
        query = query.strip()
        if len(query) < SEARCH_MIN_QUERY_LENGTH:
            return UserSearchResponse(users=[])

        result = await self.db.execute(
            select(User)
            .where(
                or_(
                    User.username.icontains(query, autoescape=True),
                    User.email.icontains(query, autoescape=True),
                    User.name.icontains(query, autoescape=True),
                ),
                User.id != caller.id,
                User.is_active.is_(True),
            )
            .order_by(User.username)
            .limit(limit)
        )
        users = [
            UserSearchResult(
                id=user.id,
                username=user.username,
                name=user.name,
                email=user.email,
                image_url=user.image_url,
                display_name=user.display_name,
            )
            for user in result.scalars().all()
        ]
        return UserSearchResponse(users=users)

    # -----------------------------------------------------------------------
    # Username settings
    # -----------------------------------------------------------------------

    async def update_username(self, user: User, username: str) -> UsernameUpdateResponse:
        if username == user.username:
            return UsernameUpdateResponse(message="Username updated successfully", username=username)

        check = await self.usernames.is_username_valid(username)
        if isinstance(check, Invalid):
            raise self._invalid_username(check.message)

        previous = user.username
        try:
            async with self.db.begin_nested():
                user.username = username
                await self.db.flush()
        except IntegrityError:
            await self.db.refresh(user)
            raise self._invalid_username(USERNAME_TAKEN_MESSAGE)

        await self.db.refresh(user)
        logger.info("User %s changed username %s -> %s", user.id, previous, username)
        return UsernameUpdateResponse(message="Username updated successfully", username=username)

    async def validate_username(self, username: str) -> UsernameValidationResponse:
        """Bad format is a 400; a taken username is a normal ``valid=False`` answer."""
        if not is_username_format_valid(username):
            raise self._invalid_username(USERNAME_FORMAT_MESSAGE)

        if await self.usernames.is_taken(username):
            return UsernameValidationResponse(valid=False, message=USERNAME_TAKEN_MESSAGE)
        return UsernameValidationResponse(valid=True)

    # -----------------------------------------------------------------------
    # Admin
    # -----------------------------------------------------------------------

    async def generate_missing_usernames(self, caller: User) -> GenerateUsernamesResponse:
        """Backfill usernames. Only the earliest registered user may run it."""
        result = await self.db.execute(
            select(User.id).order_by(User.created_at, User.id).limit(1)
        )
        if result.scalar_one_or_none() != caller.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={"code": "ADMIN_ONLY", "message": "Only the platform admin can do this"},
            )

        updated = await self.usernames.backfill_usernames()
        return GenerateUsernamesResponse(
            message=f"Generated usernames for {updated} users",
            updated=updated,
        )

    @staticmethod
    def _invalid_username(message: str) -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"code": "INVALID_USERNAME", "message": message},
        )
