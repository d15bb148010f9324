"""
Organization ORM model.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.member import OrgMember


class OrganizationType(str, enum.Enum):
    """What kind of business the tenant is."""

    CONTRACTOR = "CONTRACTOR"
    STORE = "STORE"


class Organization(Base, UUIDMixin, TimestampMixin):
    """Represents a tenant organization."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[OrganizationType] = mapped_column(
        Enum(OrganizationType, name="organization_type"), nullable=False
    )

    # Relationships
    members: Mapped[list[OrgMember]] = relationship(
        "OrgMember", back_populates="organization", cascade="all, delete-orphan"
    )

    def __repr__(self) -> str:
        return f"<Organization id={self.id} name={self.name!r} type={self.type}>"
