"""
Platform admin endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.core.dependencies import get_current_user
from app.models.user import User
from app.routers.settings import get_user_service
from app.schemas.user import GenerateUsernamesResponse
from app.services.user_service import UserService

router = APIRouter()


@router.post(
    "/generate-usernames",
    response_model=GenerateUsernamesResponse,
    summary="Assign usernames to users that lack one",
)
async def generate_usernames(
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> GenerateUsernamesResponse:
    """Restricted to the platform admin (the earliest registered user)."""
    return await service.generate_missing_usernames(current_user)
