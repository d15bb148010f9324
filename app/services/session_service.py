"""
Active-organization selection.

Each session (identified by the ``sid`` JWT claim) points at one organization
it is acting as. The pointer lives in Redis and is never trusted on its own:
every read re-validates it against membership.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Union
from uuid import UUID

import redis.asyncio as aioredis
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.security import active_org_redis_key, user_sessions_redis_key
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization
from app.services.authorization_service import Allowed, AuthorizationGate

logger = logging.getLogger(__name__)

SWITCH_NOT_FOUND = "not found"
SWITCH_FORBIDDEN = "forbidden"


@dataclass(frozen=True)
class Switched:
    organization: Organization
    membership: OrgMember


@dataclass(frozen=True)
class Failed:
    """``reason`` is SWITCH_NOT_FOUND or SWITCH_FORBIDDEN."""

    reason: str


SwitchResult = Union[Switched, Failed]


class ActiveOrganizationService:
    """Reads and writes the per-session active organization pointer."""

    def __init__(self, db: AsyncSession, redis: aioredis.Redis) -> None:
        self.db = db
        self.redis = redis
        self.gate = AuthorizationGate(db)
        self._ttl_seconds = settings.JWT_REFRESH_TOKEN_EXPIRE_DAYS * 24 * 60 * 60

    # -----------------------------------------------------------------------
    # Session bookkeeping
    # -----------------------------------------------------------------------

    async def register_session(self, user_id: UUID, session_id: str) -> None:
        """
        Track a session so its pointer can be cleared when memberships go away.

        Sessions live in a sorted set scored by expiry; expired entries are
        trimmed on every write.
        """
        key = user_sessions_redis_key(str(user_id))
        now = time.time()
        await self.redis.zadd(key, {session_id: now + self._ttl_seconds})
        await self.redis.zremrangebyscore(key, "-inf", now)
        await self.redis.expire(key, self._ttl_seconds)

    async def live_sessions(self, user_id: UUID) -> list[str]:
        key = user_sessions_redis_key(str(user_id))
        await self.redis.zremrangebyscore(key, "-inf", time.time())
        return await self.redis.zrange(key, 0, -1)

    async def forget_session(self, user_id: UUID, session_id: str) -> None:
        await self.redis.delete(active_org_redis_key(session_id))
        await self.redis.zrem(user_sessions_redis_key(str(user_id)), session_id)

    # -----------------------------------------------------------------------
    # Switch
    # -----------------------------------------------------------------------

    async def switch_active_organization(
        self, user_id: UUID, session_id: str, org_id: UUID
    ) -> SwitchResult:
        """
        Point the session at ``org_id``.

        Fails with SWITCH_NOT_FOUND if the organization does not exist and
        SWITCH_FORBIDDEN if the user has no membership in it. Switching to the
        organization that is already active succeeds without changes.
        """
        org = await self.db.get(Organization, org_id)
        if org is None:
            return Failed(SWITCH_NOT_FOUND)

        decision = await self.gate.authorize(user_id, org_id, MemberRole.VIEWER)
        if not isinstance(decision, Allowed):
            return Failed(SWITCH_FORBIDDEN)

        await self.set_active(user_id, session_id, org_id)
        return Switched(organization=org, membership=decision.membership)

    async def set_active(self, user_id: UUID, session_id: str, org_id: UUID) -> None:
        """Write the pointer. Callers must have checked membership."""
        await self.redis.setex(
            active_org_redis_key(session_id), self._ttl_seconds, str(org_id)
        )
        await self.register_session(user_id, session_id)

    # -----------------------------------------------------------------------
    # Read
    # -----------------------------------------------------------------------

    async def get_active_organization(
        self, user_id: UUID, session_id: str
    ) -> Switched | None:
        """
        Return the session's active organization, or None.

        A pointer whose membership no longer exists is deleted on the spot.
        """
        key = active_org_redis_key(session_id)
        raw = await self.redis.get(key)
        if raw is None:
            return None

        try:
            org_id = UUID(raw)
        except ValueError:
            await self.redis.delete(key)
            return None

        decision = await self.gate.authorize(user_id, org_id, MemberRole.VIEWER)
        if not isinstance(decision, Allowed):
            logger.info(
                "Dropping stale active organization org_id=%s session=%s", org_id, session_id
            )
            await self.redis.delete(key)
            return None

        org = await self.db.get(Organization, org_id)
        if org is None:
            await self.redis.delete(key)
            return None
        return Switched(organization=org, membership=decision.membership)

    # -----------------------------------------------------------------------
    # Invalidation
    # -----------------------------------------------------------------------

    async def clear_for_membership(self, user_id: UUID, org_id: UUID) -> int:
        """
        Clear every session of ``user_id`` that points at ``org_id``.

        Called after a membership is deleted. Returns the number cleared.
        """
        cleared = 0
        target = str(org_id)
        for session_id in await self.live_sessions(user_id):
            key = active_org_redis_key(session_id)
            if await self.redis.get(key) == target:
                await self.redis.delete(key)
                cleared += 1
        if cleared:
            logger.info(
                "Cleared active organization org_id=%s for user_id=%s sessions=%d",
                org_id,
                user_id,
                cleared,
            )
        return cleared
