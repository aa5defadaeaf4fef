"""Task lifecycle routes."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Query, Response, status

from ...deps import CurrentUserDependency, TaskServiceDependency
from ...errors import InvalidInputError
from ...models import TaskPriority, TaskStatus
from ...schemas import (
    JobEnqueuedResponse,
    TaskAssign,
    TaskCreate,
    TaskDashboardRead,
    TaskListResponse,
    TaskRead,
    TaskUpdate,
)
from ...services import request_export

router = APIRouter(prefix="/tasks", tags=["tasks"])

LimitQuery = Annotated[
    int | None,
    Query(description="Maximum number of tasks to return (clamped to 1..100)."),
]
OffsetQuery = Annotated[
    int | None,
    Query(description="Number of tasks to skip before collecting results."),
]


def _parse_filter(name: str, enum_type: Any, value: str | None) -> Any:
    if value is None or value == "":
        return None
    raw: Any = int(value) if value.isdigit() else value
    try:
        return enum_type.parse(raw)
    except ValueError as exc:
        raise InvalidInputError(
            f"Unknown {name} filter.",
            errors={name: ["is not included in the list"]},
        ) from exc


@router.get("", response_model=TaskListResponse, summary="List visible tasks")
async def list_tasks(
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    priority: str | None = None,
    assigned_to_me: bool = False,
    created_by_me: bool = False,
    limit: LimitQuery = None,
    offset: OffsetQuery = None,
) -> TaskListResponse:
    page = await service.list_tasks(
        current_user,
        status=_parse_filter("status", TaskStatus, status_filter),
        priority=_parse_filter("priority", TaskPriority, priority),
        assigned_to_me=assigned_to_me,
        created_by_me=created_by_me,
        limit=limit,
        offset=offset,
    )
    return TaskListResponse.model_validate(page)


@router.post("", response_model=TaskRead, status_code=status.HTTP_201_CREATED, summary="Create a task")
async def create_task(
    payload: TaskCreate,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskRead:
    task = await service.create_task(current_user, payload.model_dump(exclude_unset=True))
    return TaskRead.model_validate(task)


@router.get("/overdue", response_model=list[TaskRead], summary="List overdue visible tasks")
async def list_overdue_tasks(
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> list[TaskRead]:
    tasks = await service.list_overdue(current_user)
    return [TaskRead.model_validate(task) for task in tasks]


@router.get("/dashboard", response_model=TaskDashboardRead, summary="Task dashboard")
async def read_dashboard(
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskDashboardRead:
    dashboard = await service.dashboard(current_user)
    return TaskDashboardRead.model_validate(dashboard)


@router.post(
    "/export",
    response_model=JobEnqueuedResponse,
    status_code=status.HTTP_202_ACCEPTED,
    summary="Email an export of the tasks assigned to the current user",
)
async def export_tasks(current_user: CurrentUserDependency) -> JobEnqueuedResponse:
    job = request_export(current_user)
    return JobEnqueuedResponse(job_id=job.id, message="Export queued; it will be emailed shortly.")


@router.get("/{task_id}", response_model=TaskRead, summary="Retrieve a task")
async def read_task(
    task_id: int,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskRead:
    task = await service.get_task(current_user, task_id)
    return TaskRead.model_validate(task)


@router.patch("/{task_id}", response_model=TaskRead, summary="Update a task")
async def update_task(
    task_id: int,
    payload: TaskUpdate,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskRead:
    task = await service.find_task(task_id)
    task = await service.update_task(task, current_user, payload.model_dump(exclude_unset=True))
    return TaskRead.model_validate(task)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete a task")
async def delete_task(
    task_id: int,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> Response:
    task = await service.find_task(task_id)
    await service.destroy_task(task, current_user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{task_id}/assign", response_model=TaskRead, summary="Assign a task")
async def assign_task(
    task_id: int,
    payload: TaskAssign,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskRead:
    task = await service.find_task(task_id)
    task = await service.assign_task(task, payload.assignee_id, current_user)
    return TaskRead.model_validate(task)


@router.post("/{task_id}/complete", response_model=TaskRead, summary="Complete a task")
async def complete_task(
    task_id: int,
    current_user: CurrentUserDependency,
    service: TaskServiceDependency,
) -> TaskRead:
    task = await service.find_task(task_id)
    task = await service.complete_task(task, current_user)
    return TaskRead.model_validate(task)
