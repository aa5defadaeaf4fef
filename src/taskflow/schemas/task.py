"""Task-related Pydantic schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Union

from pydantic import BaseModel, ConfigDict, StrictInt, StrictStr

from ..models import TaskPriority, TaskStatus

# Enum values are checked by the service so that bad values surface as
# domain errors; names and ordinals are both accepted.
StatusInput = Union[StrictInt, StrictStr]
PriorityInput = Union[StrictInt, StrictStr]

TASK_READ_EXAMPLE = {
    "id": 1,
    "title": "Ship release",
    "description": "Tag, build and publish 1.4.0.",
    "status": TaskStatus.PENDING.value,
    "priority": TaskPriority.URGENT.value,
    "due_date": "2024-05-01T17:00:00Z",
    "completed_at": None,
    "overdue": False,
    "creator_id": 1,
    "assignee_id": 3,
    "created_at": "2024-04-20T09:00:00Z",
    "updated_at": "2024-04-20T09:00:00Z",
}


class TaskCreate(BaseModel):
    """Payload for creating a task."""

    model_config = ConfigDict(
        extra="forbid",
        json_schema_extra={
            "example": {
                "title": "Ship release",
                "priority": TaskPriority.URGENT.value,
                "due_date": "2024-05-01T17:00:00Z",
            }
        },
    )

    title: str | None = None
    description: str | None = None
    status: StatusInput | None = None
    priority: PriorityInput | None = None
    due_date: datetime | None = None
    assignee_id: int | None = None


class TaskUpdate(BaseModel):
    """Partial update; only the fields present in the request are applied."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    status: StatusInput | None = None
    priority: PriorityInput | None = None
    due_date: datetime | None = None


class TaskAssign(BaseModel):
    assignee_id: int


class TaskRead(BaseModel):
    """Public representation of a task."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={"example": TASK_READ_EXAMPLE},
    )

    id: int
    title: str
    description: str | None = None
    status: TaskStatus
    priority: TaskPriority
    due_date: datetime | None = None
    completed_at: datetime | None = None
    overdue: bool
    creator_id: int
    assignee_id: int | None = None
    created_at: datetime
    updated_at: datetime


class TaskListResponse(BaseModel):
    """Paginated collection of tasks."""

    model_config = ConfigDict(from_attributes=True)

    items: list[TaskRead]
    total: int
    limit: int
    offset: int


class TaskDashboardRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    total_by_status: dict[str, int]
    overdue_count: int
    assigned_incomplete: list[TaskRead]
    recent_activity: list[TaskRead]
