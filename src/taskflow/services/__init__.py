"""Domain service layer package."""

from __future__ import annotations

from .comments import CommentService
from .exports import TaskExportService, request_export
from .maintenance import SweepSummary, run_archival_sweep, run_reminder_sweep
from .notifications import NotificationDispatcher, NotificationService, TaskEvent
from .tasks import TaskDashboard, TaskPage, TaskService
from .users import UserService

__all__ = [
    "CommentService",
    "NotificationDispatcher",
    "NotificationService",
    "SweepSummary",
    "TaskDashboard",
    "TaskEvent",
    "TaskExportService",
    "TaskPage",
    "TaskService",
    "UserService",
    "request_export",
    "run_archival_sweep",
    "run_reminder_sweep",
]
