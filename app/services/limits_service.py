"""
Organization-limit policy.

An ADMIN membership stands in for "founded this organization". The number a
user may hold depends on their billing tier.

The two entry points fail in opposite directions when the count cannot be
read: the remaining-slots read returns 1 so a new user is never blocked from
onboarding, while the limit check that gates creation reports the limit as
reached.
"""

from __future__ import annotations

import logging
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.member import MemberRole, OrgMember
from app.services.subscription_service import SubscriptionService, Tier

logger = logging.getLogger(__name__)


class OrganizationLimitService:
    """Counts founded organizations against the tier limit."""

    def __init__(
        self,
        db: AsyncSession,
        subscriptions: SubscriptionService | None = None,
    ) -> None:
        self.db = db
        self.subscriptions = subscriptions or SubscriptionService()

    async def get_organization_limit(self, user_id: UUID) -> int:
        tier = await self.subscriptions.get_tier(user_id)
        if tier == Tier.paid:
            return settings.PAID_TIER_MAX_ORGANIZATIONS
        return settings.FREE_TIER_MAX_ORGANIZATIONS

    async def count_admin_memberships(self, user_id: UUID) -> int:
        """Raises SQLAlchemyError if storage is unavailable."""
        result = await self.db.execute(
            select(func.count())
            .select_from(OrgMember)
            .where(
                OrgMember.user_id == user_id,
                OrgMember.role == MemberRole.ADMIN,
            )
        )
        return int(result.scalar_one())

    async def remaining_organization_slots(self, user_id: UUID) -> int:
        """
        How many more organizations the user may found (never negative).

        Falls back to 1 if the count cannot be read.
        """
        try:
            admin_count = await self.count_admin_memberships(user_id)
        except SQLAlchemyError:
            logger.exception("Could not count organizations for user_id=%s", user_id)
            return 1

        limit = await self.get_organization_limit(user_id)
        remaining = max(0, limit - admin_count)
        logger.debug(
            "user_id=%s has %d organization(s) remaining (%d/%d)",
            user_id,
            remaining,
            admin_count,
            limit,
        )
        return remaining

    async def has_reached_organization_limit(self, user_id: UUID) -> bool:
        """
        Gate for creating an organization.

        Reports the limit as reached if the count cannot be read.
        """
        try:
            admin_count = await self.count_admin_memberships(user_id)
        except SQLAlchemyError:
            logger.exception(
                "Could not count organizations for user_id=%s; denying creation", user_id
            )
            return True

        limit = await self.get_organization_limit(user_id)
        return admin_count >= limit
