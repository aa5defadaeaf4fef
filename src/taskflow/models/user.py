"""User domain models built with SQLModel."""

from __future__ import annotations

from enum import Enum

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .common import TimestampMixin


class UserRole(str, Enum):
    """Mutually exclusive roles, ranked member < manager < admin."""

    MEMBER = "member"
    MANAGER = "manager"
    ADMIN = "admin"

    @property
    def rank(self) -> int:
        return _ROLE_RANKS[self]

    def at_least(self, other: "UserRole") -> bool:
        """Return ``True`` when this role ranks at or above ``other``."""
        return self.rank >= other.rank


_ROLE_RANKS: dict[UserRole, int] = {
    UserRole.MEMBER: 0,
    UserRole.MANAGER: 1,
    UserRole.ADMIN: 2,
}


def normalize_email(email: str) -> str:
    """Return the canonical (case-insensitive) form of an e-mail address."""
    return email.strip().lower()


class UserBase(SQLModel, table=False):
    """Shared attributes for user models."""

    email: str = Field(
        max_length=320,
        sa_column=sa.Column(sa.String(length=320), nullable=False, unique=True),
    )
    first_name: str = Field(
        max_length=255,
        sa_column=sa.Column(sa.String(length=255), nullable=False),
    )
    last_name: str = Field(
        max_length=255,
        sa_column=sa.Column(sa.String(length=255), nullable=False),
    )
    role: UserRole = Field(
        default=UserRole.MEMBER,
        sa_column=sa.Column(
            sa.Enum(
                UserRole,
                name="user_role",
                native_enum=False,
                values_callable=lambda enum: [member.value for member in enum],
            ),
            nullable=False,
            server_default=UserRole.MEMBER.value,
        ),
    )


class User(UserBase, TimestampMixin, table=True):
    """Persistent user model."""

    __tablename__ = "users"

    id: int | None = Field(default=None, primary_key=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


__all__ = ["User", "UserBase", "UserRole", "normalize_email"]
