"""
Authorization gate.

Single place where organization membership and role sufficiency are decided.
Every organization-scoped route goes through ``AuthorizationGate.authorize``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.member import MemberRole, OrgMember

NOT_A_MEMBER = "not a member"
INSUFFICIENT_ROLE = "insufficient role"


@dataclass(frozen=True)
class Allowed:
    """Access granted; carries the membership the decision was based on."""

    membership: OrgMember


@dataclass(frozen=True)
class Denied:
    """Access refused. ``reason`` is NOT_A_MEMBER or INSUFFICIENT_ROLE."""

    reason: str


AccessDecision = Union[Allowed, Denied]


class AuthorizationGate:
    """Decides allow/deny from the current membership state. Never mutates."""

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def get_membership(self, user_id: UUID, org_id: UUID) -> OrgMember | None:
        # populate_existing: re-read the row even if the session already holds it
        result = await self.db.execute(
            select(OrgMember)
            .where(
                OrgMember.user_id == user_id,
                OrgMember.org_id == org_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def authorize(
        self,
        user_id: UUID,
        org_id: UUID,
        min_role: MemberRole = MemberRole.VIEWER,
    ) -> AccessDecision:
        """
        Decide whether ``user_id`` may act in ``org_id`` with at least ``min_role``.

        A missing organization is indistinguishable from a missing membership.
        """
        membership = await self.get_membership(user_id, org_id)
        if membership is None:
            return Denied(NOT_A_MEMBER)
        if not membership.role.satisfies(min_role):
            return Denied(INSUFFICIENT_ROLE)
        return Allowed(membership)
