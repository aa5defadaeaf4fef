"""Task lifecycle engine.

Every mutating operation follows the same order: authorize, validate, write
through a conditional update, commit, refresh, then emit the lifecycle
event. Nothing is written when authorization or validation fails, and the
event is only emitted once the change is committed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Mapping

from sqlalchemy.exc import IntegrityError
from sqlmodel.ext.asyncio.session import AsyncSession

from ..errors import (
    AlreadyAssignedError,
    AlreadyCompletedError,
    AssigneeNotFoundError,
    InvalidInputError,
    NotFoundError,
    ValidationFailedError,
)
from ..models import Task, TaskPriority, TaskStatus, User, ensure_utc, utcnow
from ..policies import TaskAction, enforce, visible_scope
from ..repositories import CommentRepository, TaskRepository, UserRepository
from .notifications import NotificationDispatcher, TaskEvent

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 255
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100
RECENT_ACTIVITY_LIMIT = 10

EDITABLE_FIELDS = frozenset({"title", "description", "status", "priority", "due_date"})
CREATE_FIELDS = EDITABLE_FIELDS | {"assignee_id"}

BLANK = "can't be blank"
NOT_IN_LIST = "is not included in the list"


@dataclass(slots=True)
class TaskPage:
    items: list[Task]
    total: int
    limit: int
    offset: int


@dataclass(slots=True)
class TaskDashboard:
    """Scoped summary of the task collection for one actor."""

    total_by_status: dict[str, int]
    overdue_count: int
    assigned_incomplete: list[Task] = field(default_factory=list)
    recent_activity: list[Task] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(self.total_by_status.values())


def clamp_page(limit: int | None, offset: int | None) -> tuple[int, int]:
    """Clamp pagination to ``1 <= limit <= 100`` and ``offset >= 0``."""
    size = DEFAULT_PAGE_SIZE if limit is None else limit
    return max(1, min(size, MAX_PAGE_SIZE)), max(offset or 0, 0)


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, str):
        return ensure_utc(datetime.fromisoformat(value))
    raise ValueError(value)


def clean_task_fields(
    fields: Mapping[str, Any],
    *,
    allowed: frozenset[str],
) -> tuple[dict[str, Any], dict[str, list[str]]]:
    """Normalise caller-supplied task attributes.

    Returns the cleaned values and a mapping of field name to messages for
    everything that was rejected.
    """

    cleaned: dict[str, Any] = {}
    errors: dict[str, list[str]] = {}

    def reject(name: str, message: str) -> None:
        errors.setdefault(name, []).append(message)

    for name, value in fields.items():
        if name not in allowed:
            reject(name, "is not permitted")
        elif name == "title":
            title = value.strip() if isinstance(value, str) else ""
            if not title:
                reject(name, BLANK)
            elif len(title) > TITLE_MAX_LENGTH:
                reject(name, f"is too long (maximum is {TITLE_MAX_LENGTH} characters)")
            else:
                cleaned[name] = title
        elif name == "description":
            if value is not None and not isinstance(value, str):
                reject(name, "must be text")
            else:
                cleaned[name] = value
        elif name in ("status", "priority"):
            enum_type = TaskStatus if name == "status" else TaskPriority
            if value is None:
                reject(name, BLANK)
                continue
            try:
                cleaned[name] = enum_type.parse(value)
            except ValueError:
                reject(name, NOT_IN_LIST)
        elif name == "due_date":
            if value is None:
                cleaned[name] = None
                continue
            try:
                cleaned[name] = _parse_datetime(value)
            except ValueError:
                reject(name, "is not a valid datetime")
        elif name == "assignee_id":
            if value is None:
                cleaned[name] = None
            elif isinstance(value, int) and not isinstance(value, bool):
                cleaned[name] = value
            else:
                reject(name, "must be an integer")
    return cleaned, errors


def _completion_side_effects(
    current: TaskStatus,
    target: TaskStatus,
    now: datetime,
) -> dict[str, Any]:
    if target is TaskStatus.COMPLETED and current is not TaskStatus.COMPLETED:
        return {"completed_at": now}
    if current is TaskStatus.COMPLETED and target is not TaskStatus.COMPLETED:
        return {"completed_at": None}
    return {}


class TaskService:
    """High-level business orchestration for ``Task`` entities."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        dispatcher: NotificationDispatcher | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._repository = TaskRepository(session)
        self._users = UserRepository(session)
        self._comments = CommentRepository(session)
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._clock = clock

    @property
    def repository(self) -> TaskRepository:
        return self._repository

    async def find_task(self, task_id: int) -> Task:
        """Load a task by id or raise ``NotFoundError``; no authorization is applied."""
        task = await self._repository.get(task_id)
        if task is None:
            raise NotFoundError(f"Task {task_id} not found.")
        return task

    async def get_task(self, actor: User, task_id: int) -> Task:
        task = await self.find_task(task_id)
        enforce(actor, TaskAction.VIEW, task)
        return task

    async def list_tasks(
        self,
        actor: User,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assigned_to_me: bool = False,
        created_by_me: bool = False,
        limit: int | None = None,
        offset: int | None = None,
    ) -> TaskPage:
        """Return one page of the tasks visible to ``actor``."""
        enforce(actor, TaskAction.LIST)
        page_limit, page_offset = clamp_page(limit, offset)
        items, total = await self._repository.list_paginated(
            scope=visible_scope(actor),
            status=status,
            priority=priority,
            assignee_id=actor.id if assigned_to_me else None,
            creator_id=actor.id if created_by_me else None,
            limit=page_limit,
            offset=page_offset,
        )
        return TaskPage(items=items, total=total, limit=page_limit, offset=page_offset)

    async def list_overdue(self, actor: User) -> list[Task]:
        enforce(actor, TaskAction.LIST)
        return await self._repository.list_overdue(scope=visible_scope(actor), now=self._clock())

    async def dashboard(self, actor: User) -> TaskDashboard:
        enforce(actor, TaskAction.LIST)
        scope = visible_scope(actor)
        counts = await self._repository.count_by_status(scope)
        overdue = await self._repository.count_overdue(scope=scope, now=self._clock())
        assigned = await self._repository.list_open_assigned_to(actor.id)
        recent = await self._repository.list_recent(scope=scope, limit=RECENT_ACTIVITY_LIMIT)
        return TaskDashboard(
            total_by_status={status.value: total for status, total in counts.items()},
            overdue_count=overdue,
            assigned_incomplete=assigned,
            recent_activity=recent,
        )

    async def create_task(self, creator: User, fields: Mapping[str, Any]) -> Task:
        """Create a task owned by ``creator``.

        Raises ``InvalidInputError`` when the title is blank, an enum value is
        unknown or the assignee does not exist; nothing is written then.
        """
        enforce(creator, TaskAction.CREATE)
        cleaned, errors = clean_task_fields(fields, allowed=CREATE_FIELDS)
        if "title" not in cleaned and "title" not in errors:
            errors["title"] = [BLANK]
        assignee_id = cleaned.pop("assignee_id", None)
        if assignee_id is not None and await self._users.get(assignee_id) is None:
            errors.setdefault("assignee", []).append("must exist")
        if errors:
            raise InvalidInputError("Task could not be created.", errors=errors)

        now = self._clock()
        status = cleaned.pop("status", TaskStatus.PENDING)
        priority = cleaned.pop("priority", TaskPriority.MEDIUM)
        task = Task(
            **cleaned,
            status=status,
            priority=priority,
            creator_id=creator.id,
            assignee_id=assignee_id,
            completed_at=now if status is TaskStatus.COMPLETED else None,
            created_at=now,
            updated_at=now,
        )
        await self._repository.add(task)
        await self._session.commit()
        await self._repository.refresh(task)
        logger.info(
            "Task %s created",
            task.id,
            extra={"task_id": task.id, "creator_id": creator.id, "assignee_id": assignee_id},
        )
        if task.assignee_id is not None:
            self._dispatcher.emit(TaskEvent.CREATED, task.id)
        return task

    async def update_task(self, task: Task | None, actor: User, fields: Mapping[str, Any]) -> Task:
        """Apply attribute changes; status changes keep ``completed_at`` in sync."""
        enforce(actor, TaskAction.UPDATE, task)
        cleaned, errors = clean_task_fields(fields, allowed=EDITABLE_FIELDS)
        if errors:
            raise ValidationFailedError("Task could not be updated.", errors=errors)
        if not cleaned:
            return task

        now = self._clock()
        guards: list[Any] = []
        target = cleaned.get("status")
        if target is not None:
            if target is TaskStatus.COMPLETED:
                if task.status == TaskStatus.COMPLETED:
                    raise AlreadyCompletedError()
                guards.append(Task.status != TaskStatus.COMPLETED)
            else:
                guards.append(Task.status == task.status)
            cleaned.update(_completion_side_effects(task.status, target, now))
        cleaned["updated_at"] = now

        applied = await self._repository.update_fields(task.id, cleaned, *guards)
        if not applied:
            await self._session.rollback()
            await self._repository.refresh(task)
            if target is TaskStatus.COMPLETED:
                raise AlreadyCompletedError()
            raise ValidationFailedError(
                "Task changed concurrently; reload and retry.",
                errors={"status": ["was modified by another request"]},
            )
        await self._session.commit()
        await self._repository.refresh(task)
        logger.info("Task %s updated", task.id, extra={"task_id": task.id, "fields": sorted(cleaned)})
        return task

    async def assign_task(self, task: Task | None, assignee_id: int | None, actor: User) -> Task:
        """Assign ``task`` to ``assignee_id``; re-assigning the same user is rejected."""
        enforce(actor, TaskAction.ASSIGN, task)
        assignee = await self._users.get(assignee_id) if assignee_id is not None else None
        if assignee is None:
            raise AssigneeNotFoundError(details={"assignee_id": assignee_id})
        if task.assignee_id == assignee.id:
            raise AlreadyAssignedError()

        if not await self._repository.assign_if_changed(task.id, assignee.id, now=self._clock()):
            await self._session.rollback()
            await self._repository.refresh(task)
            raise AlreadyAssignedError()
        await self._session.commit()
        await self._repository.refresh(task)
        logger.info(
            "Task %s assigned",
            task.id,
            extra={"task_id": task.id, "assignee_id": assignee.id, "actor_id": actor.id},
        )
        self._dispatcher.emit(TaskEvent.ASSIGNED, task.id)
        return task

    async def complete_task(self, task: Task | None, actor: User) -> Task:
        """Mark ``task`` completed; a second completion raises ``AlreadyCompletedError``."""
        enforce(actor, TaskAction.COMPLETE, task)
        if task.status == TaskStatus.COMPLETED:
            raise AlreadyCompletedError()

        if not await self._repository.mark_completed(task.id, completed_at=self._clock()):
            await self._session.rollback()
            await self._repository.refresh(task)
            raise AlreadyCompletedError()
        await self._session.commit()
        await self._repository.refresh(task)
        logger.info("Task %s completed", task.id, extra={"task_id": task.id, "actor_id": actor.id})
        self._dispatcher.emit(TaskEvent.COMPLETED, task.id)
        return task

    async def destroy_task(self, task: Task | None, actor: User) -> None:
        """Delete ``task`` together with its comments."""
        enforce(actor, TaskAction.DELETE, task)
        task_id = task.id
        try:
            await self._comments.delete_for_tasks([task_id])
            await self._repository.delete(task)
            await self._session.commit()
        except IntegrityError as exc:
            await self._session.rollback()
            raise ValidationFailedError(
                "Task could not be deleted.",
                errors={"base": ["could not be deleted"]},
            ) from exc
        logger.info("Task %s deleted", task_id, extra={"task_id": task_id, "actor_id": actor.id})

    async def archive_completed(self, task_id: int, *, cutoff: datetime, now: datetime | None = None) -> bool:
        """Archive one task if it was completed before ``cutoff``.

        Returns ``False`` when the task no longer qualifies. ``completed_at``
        is preserved so the completion time stays known.
        """
        archived = await self._repository.mark_archived(task_id, cutoff=cutoff, now=now or self._clock())
        await self._session.commit()
        return archived


__all__ = [
    "TaskDashboard",
    "TaskPage",
    "TaskService",
    "clamp_page",
    "clean_task_fields",
]
