"""
User and username settings schemas.
"""

from __future__ import annotations

from uuid import UUID

from pydantic import BaseModel, Field


class UsernameUpdateRequest(BaseModel):
    """Request body for PUT /settings/username. Format is checked by the service."""

    username: str = Field(max_length=100)


class UsernameUpdateResponse(BaseModel):
    success: bool = True
    message: str
    username: str


class UsernameValidateRequest(BaseModel):
    """Request body for POST /settings/validate-username. Format is checked by the service."""

    username: str = Field(max_length=100)


class UsernameValidationResponse(BaseModel):
    valid: bool
    message: str | None = None


class UserSearchResult(BaseModel):
    """A user returned by the invite search box."""

    id: UUID
    username: str | None
    name: str | None
    email: str
    image_url: str | None
    display_name: str


class UserSearchResponse(BaseModel):
    users: list[UserSearchResult]


class GenerateUsernamesResponse(BaseModel):
    success: bool = True
    message: str
    updated: int
