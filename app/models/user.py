"""
User ORM model.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import Base, TimestampMixin, UUIDMixin

if TYPE_CHECKING:
    from app.models.member import OrgMember


class User(Base, UUIDMixin, TimestampMixin):
    """Represents a registered user. Username stays NULL until assigned."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    username: Mapped[str | None] = mapped_column(
        String(20), nullable=True, unique=True, index=True
    )
    name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)
    image_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # Relationships
    org_memberships: Mapped[list[OrgMember]] = relationship(
        "OrgMember", back_populates="user", cascade="all, delete-orphan"
    )

    @property
    def display_name(self) -> str:
        """Name, else email local part, else username."""
        return self.name or self.email.split("@")[0] or self.username or "Unknown User"

    def __repr__(self) -> str:
        return f"<User id={self.id} username={self.username!r}>"
