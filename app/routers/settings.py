"""
Account settings endpoints.

Username changes and availability checks.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import get_current_user
from app.models.user import User
from app.schemas.user import (
    UsernameUpdateRequest,
    UsernameUpdateResponse,
    UsernameValidateRequest,
    UsernameValidationResponse,
)
from app.services.user_service import UserService

router = APIRouter()


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db=db)


@router.put(
    "/username",
    response_model=UsernameUpdateResponse,
    summary="Change the caller's username",
)
async def update_username(
    data: UsernameUpdateRequest,
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UsernameUpdateResponse:
    """400 if the username is badly formatted or held by someone else."""
    return await service.update_username(current_user, data.username)


@router.post(
    "/validate-username",
    response_model=UsernameValidationResponse,
    summary="Check whether a username is available",
)
async def validate_username(
    data: UsernameValidateRequest,
    service: UserService = Depends(get_user_service),
) -> UsernameValidationResponse:
    """
    Public endpoint used by the signup form.

    A badly formatted username is a 400; a taken one returns ``valid: false``.
    """
    return await service.validate_username(data.username)
