"""
Organization management endpoints.

List, create, switch, update, member management.
"""

from __future__ import annotations

from uuid import UUID

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.database import get_db
from app.core.dependencies import (
    CurrentSession,
    get_current_session,
    get_current_user,
    get_org_member,
    get_redis,
    require_role,
)
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization
from app.models.user import User
from app.schemas.organization import (
    InviteRequest,
    MemberResponse,
    MemberRoleUpdateRequest,
    MembersListResponse,
    OrganizationCreateRequest,
    OrganizationResponse,
    OrganizationsListResponse,
    OrganizationSummary,
    OrganizationUpdateRequest,
    RemainingOrganizationsResponse,
    SwitchOrganizationRequest,
    SwitchOrganizationResponse,
)
from app.services.organization_service import OrganizationService

router = APIRouter()

require_admin = require_role(MemberRole.ADMIN)


def get_org_service(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
) -> OrganizationService:
    """Dependency that constructs OrganizationService."""
    return OrganizationService(db=db, redis=redis)


# ---------------------------------------------------------------------------
# List / Create
# ---------------------------------------------------------------------------

@router.get(
    "",
    response_model=OrganizationsListResponse,
    summary="List the caller's organizations",
)
async def list_organizations(
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_org_service),
) -> OrganizationsListResponse:
    return await service.list_organizations(current_user)


@router.post(
    "",
    response_model=OrganizationSummary,
    status_code=status.HTTP_201_CREATED,
    summary="Create a new organization",
)
async def create_organization(
    data: OrganizationCreateRequest,
    current: CurrentSession = Depends(get_current_session),
    service: OrganizationService = Depends(get_org_service),
) -> OrganizationSummary:
    """
    Create a new organization.

    - Subject to the caller's organization limit
    - Creator is assigned the ADMIN role
    - The new organization becomes the session's active organization
    """
    return await service.create_organization(data, current.user, current.session_id)


@router.get(
    "/remaining",
    response_model=RemainingOrganizationsResponse,
    summary="Organizations the caller can still create",
)
async def remaining_organizations(
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_org_service),
) -> RemainingOrganizationsResponse:
    remaining = await service.remaining_organizations(current_user)
    return RemainingOrganizationsResponse(remaining=remaining)


# ---------------------------------------------------------------------------
# Active organization
# ---------------------------------------------------------------------------

@router.post(
    "/switch",
    response_model=SwitchOrganizationResponse,
    summary="Switch the session's active organization",
)
async def switch_organization(
    data: SwitchOrganizationRequest,
    current: CurrentSession = Depends(get_current_session),
    service: OrganizationService = Depends(get_org_service),
) -> SwitchOrganizationResponse:
    """404 if the organization does not exist, 403 if the caller is not a member."""
    return await service.switch_organization(
        current.user, current.session_id, data.organization_id
    )


@router.get(
    "/active",
    response_model=OrganizationSummary,
    summary="Get the session's active organization",
)
async def get_active_organization(
    current: CurrentSession = Depends(get_current_session),
    service: OrganizationService = Depends(get_org_service),
) -> OrganizationSummary:
    return await service.get_active_organization(current.user, current.session_id)


# ---------------------------------------------------------------------------
# Get / Update Organization
# ---------------------------------------------------------------------------

@router.get(
    "/{org_id}",
    response_model=OrganizationResponse,
    summary="Get organization details",
)
async def get_organization(
    org_and_member: tuple[Organization, OrgMember] = Depends(get_org_member),
    service: OrganizationService = Depends(get_org_service),
) -> OrganizationResponse:
    """Get organization details. Must be a member."""
    org, _ = org_and_member
    return await service.get_organization(org)


@router.patch(
    "/{org_id}",
    response_model=OrganizationResponse,
    summary="Update organization name or type",
)
async def update_organization(
    data: OrganizationUpdateRequest,
    org_and_member: tuple[Organization, OrgMember] = Depends(require_admin),
    service: OrganizationService = Depends(get_org_service),
) -> OrganizationResponse:
    """Requires ADMIN role."""
    org, _ = org_and_member
    return await service.update_organization(org, data)


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

@router.get(
    "/{org_id}/members",
    response_model=MembersListResponse,
    summary="List organization members",
)
async def list_members(
    org_and_member: tuple[Organization, OrgMember] = Depends(get_org_member),
    service: OrganizationService = Depends(get_org_service),
) -> MembersListResponse:
    org, _ = org_and_member
    return await service.list_members(org.id)


@router.post(
    "/{org_id}/invite",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Add a user to the organization",
)
async def invite_member(
    data: InviteRequest,
    org_and_member: tuple[Organization, OrgMember] = Depends(require_admin),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_org_service),
) -> MemberResponse:
    """
    Add an existing user with the given role.

    - Requires ADMIN role
    - Sends a notification email via Celery
    """
    org, _ = org_and_member
    return await service.invite_member(org, data.user_id, data.role, current_user)


@router.post(
    "/{org_id}/leave",
    status_code=status.HTTP_200_OK,
    summary="Leave the organization",
)
async def leave_organization(
    org_and_member: tuple[Organization, OrgMember] = Depends(get_org_member),
    service: OrganizationService = Depends(get_org_service),
) -> dict:
    """Any member may leave, except the last ADMIN."""
    org, member = org_and_member
    await service.leave_organization(org.id, member)
    return {}


@router.patch(
    "/{org_id}/members/{member_id}",
    response_model=MemberResponse,
    summary="Update a member's role",
)
async def update_member_role(
    member_id: UUID,
    data: MemberRoleUpdateRequest,
    org_and_member: tuple[Organization, OrgMember] = Depends(require_admin),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_org_service),
) -> MemberResponse:
    """Requires ADMIN role. Admins cannot change their own role."""
    org, _ = org_and_member
    return await service.update_member_role(org.id, member_id, data.role, current_user)


@router.delete(
    "/{org_id}/members/{member_id}",
    status_code=status.HTTP_200_OK,
    summary="Remove a member from the organization",
)
async def remove_member(
    member_id: UUID,
    org_and_member: tuple[Organization, OrgMember] = Depends(require_admin),
    current_user: User = Depends(get_current_user),
    service: OrganizationService = Depends(get_org_service),
) -> dict:
    """Requires ADMIN role. Use leave to remove yourself."""
    org, _ = org_and_member
    await service.remove_member(org.id, member_id, current_user)
    return {}
