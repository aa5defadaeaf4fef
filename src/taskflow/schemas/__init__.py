"""Pydantic schemas exposed by the API."""

from __future__ import annotations

from .comment import CommentCreate, CommentRead
from .job import JobEnqueuedResponse
from .system import ErrorResponse, HealthCheckResponse, RootResponse
from .task import TaskAssign, TaskCreate, TaskDashboardRead, TaskListResponse, TaskRead, TaskUpdate
from .user import UserCreate, UserRead, UserUpdate

__all__ = [
    "CommentCreate",
    "CommentRead",
    "ErrorResponse",
    "HealthCheckResponse",
    "JobEnqueuedResponse",
    "RootResponse",
    "TaskAssign",
    "TaskCreate",
    "TaskDashboardRead",
    "TaskListResponse",
    "TaskRead",
    "TaskUpdate",
    "UserCreate",
    "UserRead",
    "UserUpdate",
]
