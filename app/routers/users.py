"""
User directory endpoints.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from app.core.dependencies import get_current_user
from app.models.user import User
from app.routers.settings import get_user_service
from app.schemas.user import UserSearchResponse
from app.services.user_service import UserService

router = APIRouter()


@router.get(
    "/search",
    response_model=UserSearchResponse,
    summary="Search users to invite",
)
async def search_users(
    q: str = Query(default="", max_length=100),
    limit: int = Query(default=10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    service: UserService = Depends(get_user_service),
) -> UserSearchResponse:
    """Matches username, email or name. Queries under 2 characters return no users."""
    return await service.search_users(q, current_user, limit=limit)
