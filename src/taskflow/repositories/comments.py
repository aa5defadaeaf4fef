"""Repository for task comments."""

from __future__ import annotations

from typing import Sequence

from sqlalchemy import delete
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import Comment
from .base import BaseRepository


class CommentRepository(BaseRepository[Comment]):
    """Persistence helpers for ``Comment`` entities."""

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Comment)

    async def list_for_task(self, task_id: int) -> list[Comment]:
        """Return the comments of a task, oldest first."""
        result = await self.session.execute(
            select(Comment).where(Comment.task_id == task_id).order_by(Comment.created_at, Comment.id)
        )
        return list(result.scalars().all())

    async def delete_for_tasks(self, task_ids: Sequence[int]) -> int:
        if not task_ids:
            return 0
        result = await self.session.execute(
            delete(Comment)
            .where(Comment.task_id.in_(list(task_ids)))
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def delete_by_author(self, user_id: int) -> int:
        result = await self.session.execute(
            delete(Comment)
            .where(Comment.user_id == user_id)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)


__all__ = ["CommentRepository"]
