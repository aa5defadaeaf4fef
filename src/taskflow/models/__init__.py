"""Domain models exposed by the service."""

from __future__ import annotations

from .comment import Comment
from .common import TimestampMixin, UTCDateTime, ensure_utc, utcnow
from .task import Task, TaskBase, TaskPriority, TaskStatus, is_overdue
from .user import User, UserBase, UserRole, normalize_email

__all__ = [
    "Comment",
    "Task",
    "TaskBase",
    "TaskPriority",
    "TaskStatus",
    "TimestampMixin",
    "UTCDateTime",
    "User",
    "UserBase",
    "UserRole",
    "ensure_utc",
    "is_overdue",
    "normalize_email",
    "utcnow",
]
