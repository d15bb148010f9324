"""
Organization schemas.

Request/response models for organization, membership and active-organization
endpoints.
"""

from __future__ import annotations

from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from app.models.member import MemberRole
from app.models.organization import OrganizationType


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------

class OrganizationCreateRequest(BaseModel):
    """Request body for POST /organizations."""

    name: str = Field(min_length=1, max_length=255)
    type: OrganizationType


class OrganizationUpdateRequest(BaseModel):
    """Request body for PATCH /organizations/{org_id}."""

    name: str | None = Field(default=None, min_length=2, max_length=100)
    type: OrganizationType | None = None

    @model_validator(mode="after")
    def at_least_one_field(self) -> OrganizationUpdateRequest:
        if self.name is None and self.type is None:
            raise ValueError("Provide at least one of name or type")
        return self


class OrganizationSummary(BaseModel):
    """An organization as seen by one of its members."""

    id: UUID
    name: str
    type: OrganizationType
    role: MemberRole
    created_at: datetime


class OrganizationResponse(BaseModel):
    """Organization detail response."""

    id: UUID
    name: str
    type: OrganizationType
    member_count: int
    created_at: datetime
    updated_at: datetime


class OrganizationLimits(BaseModel):
    remaining: int = Field(ge=0)


class OrganizationsListResponse(BaseModel):
    """Response for GET /organizations."""

    organizations: list[OrganizationSummary]
    limits: OrganizationLimits


class RemainingOrganizationsResponse(BaseModel):
    """Response for GET /organizations/remaining."""

    remaining: int = Field(ge=0)


# ---------------------------------------------------------------------------
# Active organization
# ---------------------------------------------------------------------------

class SwitchOrganizationRequest(BaseModel):
    """Request body for POST /organizations/switch."""

    organization_id: UUID


class SwitchOrganizationResponse(BaseModel):
    success: bool = True
    active_organization: OrganizationSummary


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

class MemberResponse(BaseModel):
    """Single org member with user info and role."""

    id: UUID
    user_id: UUID
    username: str | None
    name: str | None
    email: str
    image_url: str | None
    role: MemberRole
    joined_at: datetime


class MembersListResponse(BaseModel):
    """Response for GET /organizations/{org_id}/members."""

    members: list[MemberResponse]
    total: int


class InviteRequest(BaseModel):
    """Request body for POST /organizations/{org_id}/invite."""

    user_id: UUID
    role: MemberRole


class MemberRoleUpdateRequest(BaseModel):
    """Request body for PATCH /organizations/{org_id}/members/{member_id}."""

    role: MemberRole
