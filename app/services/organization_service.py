"""
Organization business logic.

Handles org creation (subject to the tier limit), membership management and
the active-organization switch. Role checks happen in the authorization gate
before these methods are called; rules that depend on the target member
(self-edits, last admin) live here.
"""

from __future__ import annotations

import logging
from uuid import UUID

import redis.asyncio as aioredis
from fastapi import HTTPException, status
from sqlalchemy import case, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization
from app.models.user import User
from app.schemas.organization import (
    MemberResponse,
    MembersListResponse,
    OrganizationCreateRequest,
    OrganizationLimits,
    OrganizationResponse,
    OrganizationsListResponse,
    OrganizationSummary,
    OrganizationUpdateRequest,
    SwitchOrganizationResponse,
)
from app.services.limits_service import OrganizationLimitService
from app.services.session_service import (
    SWITCH_NOT_FOUND,
    ActiveOrganizationService,
    Switched,
)

logger = logging.getLogger(__name__)

# ADMIN, MEMBER, VIEWER
_ROLE_ORDER = case(
    (OrgMember.role == MemberRole.ADMIN, 0),
    (OrgMember.role == MemberRole.MEMBER, 1),
    else_=2,
)


def _summary(org: Organization, member: OrgMember) -> OrganizationSummary:
    return OrganizationSummary(
        id=org.id,
        name=org.name,
        type=org.type,
        role=member.role,
        created_at=org.created_at,
    )


def _member_response(member: OrgMember, user: User) -> MemberResponse:
    return MemberResponse(
        id=member.id,
        user_id=member.user_id,
        username=user.username,
        name=user.name,
        email=user.email,
        image_url=user.image_url,
        role=member.role,
        joined_at=member.joined_at,
    )


class OrganizationService:
    """Handles all organization operations."""

    def __init__(
        self,
        db: AsyncSession,
        redis: aioredis.Redis,
        limits: OrganizationLimitService | None = None,
    ) -> None:
        self.db = db
        self.redis = redis
        self.limits = limits or OrganizationLimitService(db)
        self.sessions = ActiveOrganizationService(db, redis)

    # -----------------------------------------------------------------------
    # List / Remaining
    # -----------------------------------------------------------------------

    async def list_organizations(self, user: User) -> OrganizationsListResponse:
        """Organizations the user belongs to, with their role and remaining slots."""
        result = await self.db.execute(
            select(OrgMember, Organization)
            .join(Organization, OrgMember.org_id == Organization.id)
            .where(OrgMember.user_id == user.id)
            .order_by(Organization.created_at)
        )
        organizations = [_summary(org, member) for member, org in result.all()]
        remaining = await self.limits.remaining_organization_slots(user.id)
        return OrganizationsListResponse(
            organizations=organizations,
            limits=OrganizationLimits(remaining=remaining),
        )

    async def remaining_organizations(self, user: User) -> int:
        return await self.limits.remaining_organization_slots(user.id)

    # -----------------------------------------------------------------------
    # Create Organization
    # -----------------------------------------------------------------------

    async def create_organization(
        self, data: OrganizationCreateRequest, founder: User, session_id: str
    ) -> OrganizationSummary:
        """
        Create a new organization.

        - Refuses when the founder has used up their organization slots
        - Creates the organization and the founder's ADMIN membership together
        - Makes the new organization the session's active one
        """
        if await self.limits.has_reached_organization_limit(founder.id):
            raise self._limit_reached()

        async with self.db.begin_nested():
            # Concurrent creations by the same founder queue on this row lock
            await self.db.execute(
                select(User.id).where(User.id == founder.id).with_for_update()
            )

            org = Organization(name=data.name, type=data.type)
            self.db.add(org)
            await self.db.flush()

            member = OrgMember(org_id=org.id, user_id=founder.id, role=MemberRole.ADMIN)
            self.db.add(member)
            await self.db.flush()

            # Raising here rolls back the savepoint
            admin_count = await self.limits.count_admin_memberships(founder.id)
            if admin_count > await self.limits.get_organization_limit(founder.id):
                logger.warning(
                    "Rolled back organization over the limit for founder=%s", founder.id
                )
                raise self._limit_reached()

        await self.db.refresh(org)
        await self.db.refresh(member)
        logger.info("Created organization org_id=%s founder=%s", org.id, founder.id)

        await self.sessions.set_active(founder.id, session_id, org.id)
        return _summary(org, member)

    # -----------------------------------------------------------------------
    # Get / Update Organization
    # -----------------------------------------------------------------------

    async def get_organization(self, org: Organization) -> OrganizationResponse:
        """Organization details with member count."""
        count_result = await self.db.execute(
            select(func.count()).select_from(OrgMember).where(OrgMember.org_id == org.id)
        )
        return OrganizationResponse(
            id=org.id,
            name=org.name,
            type=org.type,
            member_count=int(count_result.scalar_one()),
            created_at=org.created_at,
            updated_at=org.updated_at,
        )

    async def update_organization(
        self, org: Organization, data: OrganizationUpdateRequest
    ) -> OrganizationResponse:
        if data.name is not None:
            org.name = data.name
        if data.type is not None:
            org.type = data.type

        await self.db.flush()
        await self.db.refresh(org)
        return await self.get_organization(org)

    # -----------------------------------------------------------------------
    # Active organization
    # -----------------------------------------------------------------------

    async def switch_organization(
        self, user: User, session_id: str, org_id: UUID
    ) -> SwitchOrganizationResponse:
        result = await self.sessions.switch_active_organization(user.id, session_id, org_id)
        if not isinstance(result, Switched):
            if result.reason == SWITCH_NOT_FOUND:
                raise HTTPException(
                    status_code=status.HTTP_404_NOT_FOUND,
                    detail={"code": "ORG_NOT_FOUND", "message": "Organization not found"},
                )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail={
                    "code": "NOT_A_MEMBER",
                    "message": "You are not a member of this organization",
                },
            )
        return SwitchOrganizationResponse(
            active_organization=_summary(result.organization, result.membership)
        )

    async def get_active_organization(
        self, user: User, session_id: str
    ) -> OrganizationSummary:
        active = await self.sessions.get_active_organization(user.id, session_id)
        if active is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "NO_ACTIVE_ORGANIZATION",
                    "message": "No active organization selected",
                },
            )
        return _summary(active.organization, active.membership)

    # -----------------------------------------------------------------------
    # List Members
    # -----------------------------------------------------------------------

    async def list_members(self, org_id: UUID) -> MembersListResponse:
        """All members with user details, admins first."""
        result = await self.db.execute(
            select(OrgMember, User)
            .join(User, OrgMember.user_id == User.id)
            .where(OrgMember.org_id == org_id)
            .order_by(_ROLE_ORDER, OrgMember.joined_at)
        )
        members = [_member_response(member, user) for member, user in result.all()]
        return MembersListResponse(members=members, total=len(members))

    # -----------------------------------------------------------------------
    # Invite Member
    # -----------------------------------------------------------------------

    async def invite_member(
        self, org: Organization, user_id: UUID, role: MemberRole, inviter: User
    ) -> MemberResponse:
        """
        Add an existing user to the organization with ``role``.

        - 404 if the user does not exist
        - 409 if they already belong to the organization
        - Queues a notification email
        """
        invitee = await self.db.get(User, user_id)
        if invitee is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "USER_NOT_FOUND", "message": "User not found"},
            )

        existing = await self.db.execute(
            select(OrgMember.id).where(
                OrgMember.org_id == org.id,
                OrgMember.user_id == user_id,
            )
        )
        if existing.first() is not None:
            raise self._already_member()

        member = OrgMember(org_id=org.id, user_id=user_id, role=role)
        try:
            async with self.db.begin_nested():
                self.db.add(member)
                await self.db.flush()
        except IntegrityError:
            # Concurrent invite won the unique (user_id, org_id) constraint
            raise self._already_member()

        await self.db.refresh(member)
        logger.info(
            "Added user_id=%s to org_id=%s as %s by %s",
            user_id,
            org.id,
            role.value,
            inviter.id,
        )

        from app.workers.email_tasks import send_membership_email
        send_membership_email.delay(
            to_email=invitee.email,
            org_name=org.name,
            org_id=str(org.id),
            inviter_name=inviter.display_name,
            role=role.value,
            frontend_url=settings.FRONTEND_URL,
        )

        return _member_response(member, invitee)

    # -----------------------------------------------------------------------
    # Update Member Role
    # -----------------------------------------------------------------------

    async def update_member_role(
        self,
        org_id: UUID,
        member_id: UUID,
        new_role: MemberRole,
        acting_user: User,
    ) -> MemberResponse:
        """Change a member's role. Admins cannot change their own role."""
        target_member, target_user = await self._get_member(org_id, member_id)

        if target_member.user_id == acting_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={"code": "CANNOT_CHANGE_OWN_ROLE", "message": "You cannot update your own role"},
            )

        target_member.role = new_role
        await self.db.flush()
        return _member_response(target_member, target_user)

    # -----------------------------------------------------------------------
    # Remove Member / Leave
    # -----------------------------------------------------------------------

    async def remove_member(
        self,
        org_id: UUID,
        member_id: UUID,
        acting_user: User,
    ) -> None:
        """Remove another member. Their sessions stop acting as this organization."""
        target_member, _ = await self._get_member(org_id, member_id)

        if target_member.user_id == acting_user.id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail={
                    "code": "CANNOT_REMOVE_SELF",
                    "message": "You cannot remove yourself from the organization",
                },
            )

        await self._delete_membership(target_member)

    async def leave_organization(self, org_id: UUID, member: OrgMember) -> None:
        """Delete the caller's own membership. The last admin cannot leave."""
        if member.role == MemberRole.ADMIN:
            # Lock the admin rows so two admins leaving together are serialized
            admins = await self.db.execute(
                select(OrgMember.id)
                .where(OrgMember.org_id == org_id, OrgMember.role == MemberRole.ADMIN)
                .with_for_update()
            )
            if len(admins.all()) <= 1:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail={
                        "code": "LAST_ADMIN",
                        "message": "Promote another admin before leaving the organization",
                    },
                )

        await self._delete_membership(member)

    # -----------------------------------------------------------------------
    # Internal helpers
    # -----------------------------------------------------------------------

    async def _get_member(self, org_id: UUID, member_id: UUID) -> tuple[OrgMember, User]:
        result = await self.db.execute(
            select(OrgMember, User)
            .join(User, OrgMember.user_id == User.id)
            .where(OrgMember.id == member_id, OrgMember.org_id == org_id)
        )
        row = result.one_or_none()
        if row is None:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail={"code": "MEMBER_NOT_FOUND", "message": "Member not found"},
            )
        return row[0], row[1]

    async def _delete_membership(self, member: OrgMember) -> None:
        user_id, org_id = member.user_id, member.org_id
        await self.db.delete(member)
        await self.db.flush()
        await self.sessions.clear_for_membership(user_id, org_id)
        logger.info("Removed user_id=%s from org_id=%s", user_id, org_id)

    @staticmethod
    def _limit_reached() -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "code": "ORGANIZATION_LIMIT_REACHED",
                "message": (
                    "You have reached the limit of free organizations. "
                    "Please upgrade to create more."
                ),
            },
        )

    @staticmethod
    def _already_member() -> HTTPException:
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "code": "ALREADY_MEMBER",
                "message": "User is already a member of this organization",
            },
        )
