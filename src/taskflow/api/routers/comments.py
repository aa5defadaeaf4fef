"""Routes for comments nested under tasks."""

from __future__ import annotations

from fastapi import APIRouter, Response, status

from ...deps import CommentServiceDependency, CurrentUserDependency, TaskServiceDependency
from ...schemas import CommentCreate, CommentRead

router = APIRouter(prefix="/tasks/{task_id}/comments", tags=["comments"])


@router.get("", response_model=list[CommentRead], summary="List comments on a task")
async def list_comments(
    task_id: int,
    current_user: CurrentUserDependency,
    tasks: TaskServiceDependency,
    comments: CommentServiceDependency,
) -> list[CommentRead]:
    task = await tasks.find_task(task_id)
    return [CommentRead.model_validate(item) for item in await comments.list_comments(current_user, task)]


@router.post("", response_model=CommentRead, status_code=status.HTTP_201_CREATED, summary="Comment on a task")
async def create_comment(
    task_id: int,
    payload: CommentCreate,
    current_user: CurrentUserDependency,
    tasks: TaskServiceDependency,
    comments: CommentServiceDependency,
) -> CommentRead:
    task = await tasks.find_task(task_id)
    comment = await comments.create_comment(current_user, task, payload.content)
    return CommentRead.model_validate(comment)


@router.delete("/{comment_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a comment")
async def delete_comment(
    task_id: int,
    comment_id: int,
    current_user: CurrentUserDependency,
    tasks: TaskServiceDependency,
    comments: CommentServiceDependency,
) -> Response:
    task = await tasks.find_task(task_id)
    comment = await comments.find_comment(task, comment_id)
    await comments.delete_comment(current_user, comment, task)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
