"""Comment operations on tasks."""

from __future__ import annotations

from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import InvalidInputError, NotFoundError
from ..models import Comment, Task, User
from ..policies import CommentAction, enforce
from ..repositories import CommentRepository


class CommentService:
    def __init__(self, session: AsyncSession) -> None:
        self._session = session
        self._repository = CommentRepository(session)

    async def list_comments(self, actor: User, task: Task | None) -> list[Comment]:
        """Return the task's comments if the actor can see the task."""
        enforce(actor, CommentAction.LIST, task)
        return await self._repository.list_for_task(task.id)

    async def create_comment(self, actor: User, task: Task | None, content: str | None) -> Comment:
        enforce(actor, CommentAction.CREATE)
        if task is None:
            raise NotFoundError("Task not found.")
        text = content.strip() if isinstance(content, str) else ""
        if not text:
            raise InvalidInputError("Comment could not be created.", errors={"content": ["can't be blank"]})
        comment = Comment(content=text, task_id=task.id, user_id=actor.id)
        await self._repository.add(comment)
        await self._session.commit()
        await self._repository.refresh(comment)
        return comment

    async def find_comment(self, task: Task, comment_id: int) -> Comment:
        comment = await self._repository.get(comment_id)
        if comment is None or comment.task_id != task.id:
            raise NotFoundError(f"Comment {comment_id} not found.")
        return comment

    async def delete_comment(self, actor: User, comment: Comment | None, task: Task | None) -> None:
        """Delete a comment; allowed for its author, the task creator or an admin."""
        enforce(actor, CommentAction.DELETE, comment, task=task)
        await self._repository.delete(comment)
        await self._session.commit()


__all__ = ["CommentService"]
