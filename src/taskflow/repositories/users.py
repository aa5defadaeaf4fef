"""Repository for interacting with user persistence models."""

from __future__ import annotations

from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import User, UserRole, normalize_email
from .base import BaseRepository


class UserRepository(BaseRepository[User]):
    """Concrete repository for CRUD operations on ``User`` entities."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, User)

    async def get_by_email(self, email: str) -> User | None:
        """Return the user owning ``email``, compared case-insensitively."""
        result = await self.session.execute(select(User).where(User.email == normalize_email(email)))
        return result.scalar_one_or_none()

    async def list_by_role(self, role: UserRole) -> list[User]:
        result = await self.session.execute(select(User).where(User.role == role).order_by(User.id))
        return list(result.scalars().all())


__all__ = ["UserRepository"]
