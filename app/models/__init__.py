"""
SQLAlchemy ORM models.

All models imported here to ensure they are registered with Base.metadata.
"""

from app.models.base import Base, TimestampMixin, UUIDMixin
from app.models.member import MemberRole, OrgMember
from app.models.organization import Organization, OrganizationType
from app.models.user import User

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDMixin",
    "Organization",
    "OrganizationType",
    "User",
    "OrgMember",
    "MemberRole",
]
