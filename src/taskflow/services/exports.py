"""Task export pipeline: CSV generation, delivery and the request entry point."""

from __future__ import annotations

import csv
import io
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Callable

from rq.job import Job
from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.jobs import JobQueueUnavailableError, enqueue_data_export
from ..core.metrics import job_metrics
from ..core.notifications import Attachment, NotificationSender
from ..errors import InternalError, ServiceUnavailableError
from ..models import Task, User, utcnow
from ..repositories import TaskRepository, UserRepository
from .notifications import NotificationService

logger = logging.getLogger(__name__)

EXPORT_HEADERS = (
    "Title",
    "Description",
    "Status",
    "Priority",
    "Due Date",
    "Created At",
    "Creator",
    "Assignee",
)


@dataclass(slots=True)
class ExportReport:
    filename: str
    content: bytes
    row_count: int

    def as_attachment(self) -> Attachment:
        return Attachment(filename=self.filename, content=self.content, mimetype="text/csv")


def export_filename(today: date) -> str:
    return f"tasks_export_{today.isoformat()}.csv"


def _format_timestamp(value: datetime | None) -> str:
    return value.isoformat() if value is not None else ""


def render_csv(tasks: list[Task], names: dict[int, str]) -> bytes:
    """Render ``tasks`` as CSV; an empty list yields only the header row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    writer.writerow(EXPORT_HEADERS)
    for task in tasks:
        writer.writerow(
            [
                task.title,
                task.description or "",
                task.status.value,
                task.priority.value,
                _format_timestamp(task.due_date),
                _format_timestamp(task.created_at),
                names.get(task.creator_id, ""),
                names.get(task.assignee_id, "") if task.assignee_id is not None else "",
            ]
        )
    return buffer.getvalue().encode("utf-8")


class TaskExportService:
    """Build and deliver the export of a user's assigned tasks."""

    def __init__(
        self,
        session: AsyncSession,
        *,
        sender: NotificationSender | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._session = session
        self._tasks = TaskRepository(session)
        self._users = UserRepository(session)
        self._notifications = NotificationService(session, sender=sender)
        self._clock = clock

    async def build_report(self, user: User) -> ExportReport:
        tasks = await self._tasks.list_assigned_to(user.id)
        people = {task.creator_id for task in tasks} | {user.id}
        names = {person.id: person.full_name for person in await self._users.list_by_ids(sorted(people))}
        return ExportReport(
            filename=export_filename(self._clock().date()),
            content=render_csv(tasks, names),
            row_count=len(tasks),
        )

    async def deliver(self, user_id: int) -> ExportReport | None:
        """Build and send the export; returns ``None`` when the user is gone."""
        user = await self._users.get(user_id)
        if user is None:
            logger.error("Data export skipped: user %s not found", user_id, extra={"user_id": user_id})
            return None
        report = await self.build_report(user)
        await self._notifications.send_export(user, report.as_attachment())
        job_metrics.increment("exports_sent")
        logger.info(
            "Export sent to user %s",
            user_id,
            extra={"user_id": user_id, "row_count": report.row_count},
        )
        return report


def request_export(
    user: User,
    *,
    enqueue: Callable[[int], Job] | None = None,
) -> Job:
    """Schedule an export for ``user``.

    An unreachable queue surfaces as ``ServiceUnavailableError`` so callers
    can retry; anything else becomes ``InternalError``.
    """

    enqueue = enqueue or enqueue_data_export
    try:
        return enqueue(user.id)
    except JobQueueUnavailableError as exc:
        logger.error("Export queue unavailable for user %s", user.id, extra={"user_id": user.id})
        raise ServiceUnavailableError("Export service is temporarily unavailable.") from exc
    except Exception as exc:
        logger.exception("Failed to schedule export for user %s", user.id, extra={"user_id": user.id})
        raise InternalError("Export could not be scheduled.") from exc


__all__ = [
    "EXPORT_HEADERS",
    "ExportReport",
    "TaskExportService",
    "export_filename",
    "render_csv",
    "request_export",
]
