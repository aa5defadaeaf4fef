"""Task domain models built with SQLModel."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .common import TimestampMixin, UTCDateTime, ensure_utc, utcnow


class _OrdinalEnum(str, Enum):
    """String enum whose members also carry a stable wire/storage ordinal."""

    @property
    def ordinal(self) -> int:
        return list(type(self)).index(self)

    @classmethod
    def parse(cls, value: Any) -> Any:
        """Resolve a member from itself, its name/value, or its ordinal.

        Raises ``ValueError`` for anything else.
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, bool):
            raise ValueError(f"{value!r} is not a valid {cls.__name__}")
        if isinstance(value, int):
            members = list(cls)
            if 0 <= value < len(members):
                return members[value]
            raise ValueError(f"{value!r} is not a valid {cls.__name__}")
        if isinstance(value, str):
            normalized = value.strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        raise ValueError(f"{value!r} is not a valid {cls.__name__}")

    @classmethod
    def choices(cls) -> list[str]:
        return [member.value for member in cls]


class TaskStatus(_OrdinalEnum):
    """Lifecycle states; declaration order defines the ordinal encoding."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ARCHIVED = "archived"


class TaskPriority(_OrdinalEnum):
    """Priority levels; declaration order defines the ordinal encoding."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


def _enum_column(enum_type: type[Enum], name: str, default: Enum) -> sa.Column:
    return sa.Column(
        sa.Enum(
            enum_type,
            name=name,
            native_enum=False,
            validate_strings=True,
            values_callable=lambda enum: [member.value for member in enum],
        ),
        nullable=False,
        server_default=default.value,
    )


def is_overdue(due_date: datetime | None, status: TaskStatus, now: datetime | None = None) -> bool:
    """A task is overdue when its due date has passed and it is not completed.

    Archived tasks are intentionally not excluded.
    """
    if due_date is None:
        return False
    reference = now or utcnow()
    return ensure_utc(due_date) < ensure_utc(reference) and status != TaskStatus.COMPLETED


class TaskBase(SQLModel, table=False):
    """Shared attributes for task models."""

    title: str = Field(
        max_length=255,
        sa_column=sa.Column(sa.String(length=255), nullable=False),
    )
    description: str | None = Field(
        default=None,
        sa_column=sa.Column(sa.Text(), nullable=True),
    )
    status: TaskStatus = Field(
        default=TaskStatus.PENDING,
        sa_column=_enum_column(TaskStatus, "task_status", TaskStatus.PENDING),
    )
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM,
        sa_column=_enum_column(TaskPriority, "task_priority", TaskPriority.MEDIUM),
    )
    due_date: datetime | None = Field(
        default=None,
        sa_column=sa.Column(UTCDateTime(), nullable=True),
    )


class Task(TaskBase, TimestampMixin, table=True):
    """Persistent task model.

    ``completed_at`` is derived: it is set exactly when ``status`` is
    ``completed``, except that archival keeps the completion timestamp.
    """

    __tablename__ = "tasks"
    __table_args__ = (
        sa.CheckConstraint("length(title) > 0", name="ck_tasks_title_length"),
        sa.Index("ix_tasks_assignee_id_status", "assignee_id", "status"),
        sa.Index("ix_tasks_creator_id_status", "creator_id", "status"),
        sa.Index("ix_tasks_due_date_status", "due_date", "status"),
        sa.Index("ix_tasks_priority_status", "priority", "status"),
        sa.Index("ix_tasks_status_completed_at", "status", "completed_at"),
    )

    id: int | None = Field(default=None, primary_key=True)
    completed_at: datetime | None = Field(
        default=None,
        sa_column=sa.Column(UTCDateTime(), nullable=True),
    )
    creator_id: int = Field(
        sa_column=sa.Column(
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
    )
    assignee_id: int | None = Field(
        default=None,
        sa_column=sa.Column(
            sa.Integer(),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
    )

    @property
    def overdue(self) -> bool:
        return is_overdue(self.due_date, self.status)


__all__ = ["Task", "TaskBase", "TaskPriority", "TaskStatus", "is_overdue"]
