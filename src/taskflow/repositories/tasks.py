"""Repository for interacting with task persistence models."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func, update
from sqlalchemy.sql.elements import ColumnElement
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from ..models import Task, TaskPriority, TaskStatus
from .base import BaseRepository


class TaskRepository(BaseRepository[Task]):
    """Concrete repository encapsulating ``Task`` persistence operations.

    Query helpers accept an optional ``scope`` predicate which is applied
    before any other filter, so rows outside it are never loaded. The
    ``mark_*`` / ``assign_if_changed`` helpers are conditional single-row
    updates: they return ``False`` when the guard no longer matches, which
    lets concurrent writers observe each other's commits.
    """

    def __init__(self, session: AsyncSession) -> None:
        super().__init__(session, Task)

    @staticmethod
    def _filters(
        scope: ColumnElement[bool] | None,
        *,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assignee_id: int | None = None,
        creator_id: int | None = None,
    ) -> list[ColumnElement[bool]]:
        clauses: list[ColumnElement[bool]] = []
        if scope is not None:
            clauses.append(scope)
        if status is not None:
            clauses.append(Task.status == status)
        if priority is not None:
            clauses.append(Task.priority == priority)
        if assignee_id is not None:
            clauses.append(Task.assignee_id == assignee_id)
        if creator_id is not None:
            clauses.append(Task.creator_id == creator_id)
        return clauses

    async def get_scoped(self, task_id: int, scope: ColumnElement[bool]) -> Task | None:
        result = await self.session.execute(select(Task).where(scope, Task.id == task_id))
        return result.scalar_one_or_none()

    async def list_paginated(
        self,
        *,
        scope: ColumnElement[bool] | None = None,
        status: TaskStatus | None = None,
        priority: TaskPriority | None = None,
        assignee_id: int | None = None,
        creator_id: int | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> tuple[list[Task], int]:
        """Return one page of matching tasks, newest first, with the total count."""
        clauses = self._filters(
            scope,
            status=status,
            priority=priority,
            assignee_id=assignee_id,
            creator_id=creator_id,
        )
        query = (
            select(Task)
            .where(*clauses)
            .order_by(Task.created_at.desc(), Task.id.desc())
            .limit(limit)
            .offset(offset)
        )
        count_query = select(func.count()).select_from(Task).where(*clauses)
        result = await self.session.execute(query)
        tasks = list(result.scalars().all())
        total_result = await self.session.execute(count_query)
        return tasks, int(total_result.scalar_one())

    async def count_by_status(self, scope: ColumnElement[bool] | None = None) -> dict[TaskStatus, int]:
        """Return a count for every status, including zero counts."""
        query = select(Task.status, func.count()).where(*self._filters(scope)).group_by(Task.status)
        result = await self.session.execute(query)
        counts = dict.fromkeys(TaskStatus, 0)
        for status, total in result.all():
            counts[TaskStatus.parse(status)] = int(total)
        return counts

    def _overdue_clauses(self, scope: ColumnElement[bool] | None, now: datetime) -> list[Any]:
        return [
            *self._filters(scope),
            Task.due_date.is_not(None),
            Task.due_date < now,
            Task.status != TaskStatus.COMPLETED,
        ]

    async def list_overdue(self, *, scope: ColumnElement[bool] | None, now: datetime) -> list[Task]:
        result = await self.session.execute(
            select(Task).where(*self._overdue_clauses(scope, now)).order_by(Task.due_date, Task.id)
        )
        return list(result.scalars().all())

    async def count_overdue(self, *, scope: ColumnElement[bool] | None, now: datetime) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(Task).where(*self._overdue_clauses(scope, now))
        )
        return int(result.scalar_one())

    async def list_recent(self, *, scope: ColumnElement[bool] | None, limit: int = 10) -> list[Task]:
        result = await self.session.execute(
            select(Task)
            .where(*self._filters(scope))
            .order_by(Task.created_at.desc(), Task.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def list_open_assigned_to(self, user_id: int) -> list[Task]:
        """Return tasks assigned to ``user_id`` that are not yet completed."""
        result = await self.session.execute(
            select(Task)
            .where(Task.assignee_id == user_id, Task.status != TaskStatus.COMPLETED)
            .order_by(Task.due_date, Task.id)
        )
        return list(result.scalars().all())

    async def list_assigned_to(self, user_id: int) -> list[Task]:
        result = await self.session.execute(
            select(Task).where(Task.assignee_id == user_id).order_by(Task.created_at, Task.id)
        )
        return list(result.scalars().all())

    async def list_archivable_ids(self, cutoff: datetime) -> list[int]:
        """Return ids of completed tasks whose completion predates ``cutoff``."""
        result = await self.session.execute(
            select(Task.id)
            .where(
                Task.status == TaskStatus.COMPLETED,
                Task.completed_at.is_not(None),
                Task.completed_at < cutoff,
            )
            .order_by(Task.id)
        )
        return [int(task_id) for task_id in result.scalars().all()]

    async def list_due_between(self, start: datetime, end: datetime) -> list[Task]:
        """Return assigned, unfinished tasks whose due date falls in ``[start, end]``."""
        result = await self.session.execute(
            select(Task)
            .where(
                Task.due_date >= start,
                Task.due_date <= end,
                Task.status != TaskStatus.COMPLETED,
                Task.assignee_id.is_not(None),
            )
            .order_by(Task.due_date, Task.id)
        )
        return list(result.scalars().all())

    async def _conditional_update(self, *clauses: Any, values: dict[str, Any]) -> bool:
        statement = (
            update(Task)
            .where(*clauses)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(statement)
        return (result.rowcount or 0) == 1

    async def update_fields(self, task_id: int, values: dict[str, Any], *guards: Any) -> bool:
        """Write ``values`` to the task when every ``guard`` still holds."""
        return await self._conditional_update(Task.id == task_id, *guards, values=values)

    async def mark_completed(self, task_id: int, *, completed_at: datetime) -> bool:
        """Complete the task unless it is already completed."""
        return await self._conditional_update(
            Task.id == task_id,
            Task.status != TaskStatus.COMPLETED,
            values={
                "status": TaskStatus.COMPLETED,
                "completed_at": completed_at,
                "updated_at": completed_at,
            },
        )

    async def assign_if_changed(self, task_id: int, assignee_id: int, *, now: datetime) -> bool:
        """Assign the task unless ``assignee_id`` already holds it."""
        return await self._conditional_update(
            Task.id == task_id,
            (Task.assignee_id.is_(None)) | (Task.assignee_id != assignee_id),
            values={"assignee_id": assignee_id, "updated_at": now},
        )

    async def mark_archived(self, task_id: int, *, cutoff: datetime, now: datetime) -> bool:
        """Archive the task if it is still completed before ``cutoff``.

        ``completed_at`` is deliberately left untouched.
        """
        return await self._conditional_update(
            Task.id == task_id,
            Task.status == TaskStatus.COMPLETED,
            Task.completed_at < cutoff,
            values={"status": TaskStatus.ARCHIVED, "updated_at": now},
        )

    async def ids_created_by(self, user_id: int) -> list[int]:
        result = await self.session.execute(select(Task.id).where(Task.creator_id == user_id))
        return [int(task_id) for task_id in result.scalars().all()]

    async def delete_by_ids(self, task_ids: list[int]) -> int:
        if not task_ids:
            return 0
        result = await self.session.execute(
            delete(Task).where(Task.id.in_(task_ids)).execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)

    async def clear_assignee(self, user_id: int, *, now: datetime) -> int:
        """Unassign every task held by ``user_id``."""
        result = await self.session.execute(
            update(Task)
            .where(Task.assignee_id == user_id)
            .values(assignee_id=None, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return int(result.rowcount or 0)


__all__ = ["TaskRepository"]
