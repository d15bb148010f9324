"""
Username derivation, validation and allocation.

Usernames match ``^[a-z0-9.]{3,20}$``. A base candidate is derived from the
user's name or email, then numeric suffixes are probed until a free one is
found. The probe and the write are not atomic; the unique index on
``users.username`` is the backstop and a violation moves on to the next
candidate.
"""

from __future__ import annotations

import logging
import random
import re
from collections.abc import Iterator
from dataclasses import dataclass
from typing import Union

from sqlalchemy import inspect, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models.user import User

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
USERNAME_PATTERN = re.compile(r"^[a-z0-9.]{3,20}$")

USERNAME_FORMAT_MESSAGE = (
    "Username must be 3-20 characters and can only contain lowercase letters, "
    "numbers, and dots."
)
USERNAME_TAKEN_MESSAGE = "This username is already taken."

# Random suffixes tried once sequential suffixes are exhausted
RANDOM_SUFFIX_ATTEMPTS = 20
# Writes retried after losing a race on the unique index
MAX_CLAIM_ATTEMPTS = 5

_WHITESPACE = re.compile(r"\s+")
_DISALLOWED = re.compile(r"[^a-z0-9.]")
_DOT_RUNS = re.compile(r"\.{2,}")


class UsernameAllocationError(Exception):
    """No free username could be found or written."""


@dataclass(frozen=True)
class Valid:
    pass


@dataclass(frozen=True)
class Invalid:
    message: str


UsernameCheck = Union[Valid, Invalid]


# ---------------------------------------------------------------------------
# Pure helpers
# ---------------------------------------------------------------------------

def _clean(value: str) -> str:
    value = _DISALLOWED.sub("", value.lower())
    return _DOT_RUNS.sub(".", value)


def username_from_name(name: str) -> str:
    """'Jane Q. Public' -> 'jane.q.public'"""
    return _clean(_WHITESPACE.sub(".", name.strip().lower()))


def username_from_email(email: str) -> str:
    """'Bob.Smith@example.com' -> 'bob.smith'"""
    return _clean(email.split("@")[0])


def derive_base_username(
    name: str | None = None,
    email: str | None = None,
    rng: random.Random | None = None,
) -> str:
    """
    Derive the unsuffixed candidate.

    Name first, then email local part, then ``user<0-9999>``. A source that
    yields fewer than USERNAME_MIN_LENGTH characters falls through to the next.
    The result is truncated to USERNAME_MAX_LENGTH.
    """
    candidates = []
    if name:
        candidates.append(username_from_name(name))
    if email:
        candidates.append(username_from_email(email))

    for candidate in candidates:
        if len(candidate) >= USERNAME_MIN_LENGTH:
            return candidate[:USERNAME_MAX_LENGTH]

    rng = rng or random
    return f"user{rng.randint(0, 9999)}"


def with_suffix(base: str, suffix: int | str) -> str:
    """Append ``suffix``, shortening ``base`` so the result fits the max length."""
    suffix = str(suffix)
    return base[: USERNAME_MAX_LENGTH - len(suffix)] + suffix


def is_username_format_valid(username: str) -> bool:
    return USERNAME_PATTERN.fullmatch(username) is not None


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------

class UsernameService:
    """Username lookups and allocation against the users table."""

    def __init__(self, db: AsyncSession, rng: random.Random | None = None) -> None:
        self.db = db
        self.rng = rng or random.Random()

    async def is_taken(self, username: str) -> bool:
        result = await self.db.execute(select(User.id).where(User.username == username))
        return result.first() is not None

    async def is_username_valid(self, username: str) -> UsernameCheck:
        """Format check, then availability. Each failure has its own message."""
        if not is_username_format_valid(username):
            return Invalid(USERNAME_FORMAT_MESSAGE)
        if await self.is_taken(username):
            return Invalid(USERNAME_TAKEN_MESSAGE)
        return Valid()

    def _candidates(self, base: str) -> Iterator[str]:
        yield base
        for n in range(1, settings.USERNAME_MAX_SUFFIX_ATTEMPTS + 1):
            yield with_suffix(base, n)
        for _ in range(RANDOM_SUFFIX_ATTEMPTS):
            yield with_suffix(base, self.rng.randint(1000, 9999))

    async def allocate_username(
        self,
        name: str | None = None,
        email: str | None = None,
        exclude: frozenset[str] | set[str] = frozenset(),
    ) -> str:
        """
        Return a username that is free at the time of the call.

        ``exclude`` holds candidates already lost to a concurrent writer.

        Raises:
            UsernameAllocationError: every candidate is taken.
        """
        base = derive_base_username(name, email, rng=self.rng)
        for candidate in self._candidates(base):
            if candidate in exclude:
                continue
            if not await self.is_taken(candidate):
                return candidate
        raise UsernameAllocationError(f"No free username for base {base!r}")

    async def claim_username(
        self,
        user: User,
        name: str | None = None,
        email: str | None = None,
    ) -> str:
        """
        Allocate a username and write it onto ``user`` (new or persistent).

        Each write runs in a savepoint. A unique violation on a candidate that
        now exists marks it lost and allocation resumes with the next one. Any
        other integrity error is re-raised.
        """
        lost: set[str] = set()
        for _ in range(MAX_CLAIM_ATTEMPTS):
            candidate = await self.allocate_username(name, email, exclude=lost)
            try:
                async with self.db.begin_nested():
                    user.username = candidate
                    self.db.add(user)
                    await self.db.flush()
            except IntegrityError:
                if inspect(user).persistent:
                    await self.db.refresh(user)
                if not await self.is_taken(candidate):
                    raise
                logger.info("Username %r claimed concurrently; retrying", candidate)
                lost.add(candidate)
                continue
            return candidate

        raise UsernameAllocationError(
            f"Lost {MAX_CLAIM_ATTEMPTS} races allocating a username"
        )

    async def backfill_usernames(self) -> int:
        """Assign usernames to every user that lacks one. Returns the count."""
        result = await self.db.execute(
            select(User).where(User.username.is_(None)).order_by(User.created_at)
        )
        users = list(result.scalars().all())
        logger.info("Found %d users without usernames", len(users))

        for user in users:
            username = await self.claim_username(user, name=user.name, email=user.email)
            logger.info("Set username %s for user %s", username, user.id)

        return len(users)
