"""
Subscription lookup.

Billing is not wired up yet: every user is on the free tier.
"""

from __future__ import annotations

import enum
from uuid import UUID


class Tier(str, enum.Enum):
    """Billing tier."""

    free = "free"
    paid = "paid"


class SubscriptionService:
    """Resolves a user's billing tier."""

    async def get_tier(self, user_id: UUID) -> Tier:
        return Tier.free
