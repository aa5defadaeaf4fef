"""Periodic sweeps: archival of old completed tasks and due-date reminders.

Each sweep queries once and then handles rows one at a time. A failing row
is logged and counted without stopping the sweep; a failing query aborts
the sweep so the job layer can retry it.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, time, timedelta, timezone

from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.config import Settings, get_settings
from ..core.metrics import job_metrics
from ..core.notifications import NotificationSender
from ..models import ensure_utc, utcnow
from ..repositories import TaskRepository, UserRepository
from .notifications import NotificationService
from .tasks import TaskService

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SweepSummary:
    sweep: str
    matched: int = 0
    succeeded: int = 0
    failed: int = 0

    def as_dict(self) -> dict[str, int | str]:
        return asdict(self)


def archival_cutoff(now: datetime, age_days: int) -> datetime:
    return ensure_utc(now) - timedelta(days=age_days)


def reminder_window(now: datetime) -> tuple[datetime, datetime]:
    """Return the start and end of the next UTC calendar day."""
    tomorrow = (ensure_utc(now) + timedelta(days=1)).date()
    start = datetime.combine(tomorrow, time.min, tzinfo=timezone.utc)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


async def run_archival_sweep(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> SweepSummary:
    """Archive every task completed more than ``archival_age_days`` ago."""

    settings = settings or get_settings()
    now = now or utcnow()
    cutoff = archival_cutoff(now, settings.archival_age_days)
    service = TaskService(session, clock=lambda: now)
    summary = SweepSummary(sweep="archival")

    task_ids = await service.repository.list_archivable_ids(cutoff)
    summary.matched = len(task_ids)
    for task_id in task_ids:
        try:
            if await service.archive_completed(task_id, cutoff=cutoff, now=now):
                summary.succeeded += 1
        except Exception:
            await session.rollback()
            summary.failed += 1
            job_metrics.increment("archival_errors")
            logger.exception("Failed to archive task %s", task_id, extra={"task_id": task_id})

    job_metrics.increment("archived_tasks", summary.succeeded)
    logger.info(
        "Archival sweep finished: %s archived, %s errors",
        summary.succeeded,
        summary.failed,
        extra=summary.as_dict(),
    )
    return summary


async def run_reminder_sweep(
    session: AsyncSession,
    *,
    now: datetime | None = None,
    sender: NotificationSender | None = None,
) -> SweepSummary:
    """Remind assignees of every unfinished task due tomorrow."""

    start, end = reminder_window(now or utcnow())
    tasks = await TaskRepository(session).list_due_between(start, end)
    assignee_ids = sorted({task.assignee_id for task in tasks if task.assignee_id is not None})
    assignees = {user.id: user for user in await UserRepository(session).list_by_ids(assignee_ids)}
    notifications = NotificationService(session, sender=sender)
    summary = SweepSummary(sweep="reminder", matched=len(tasks))

    for task in tasks:
        assignee = assignees.get(task.assignee_id)
        if assignee is None:
            summary.failed += 1
            job_metrics.increment("reminder_errors")
            logger.warning("Assignee of task %s no longer exists", task.id, extra={"task_id": task.id})
            continue
        try:
            await notifications.send_reminder(task, assignee)
        except Exception:
            summary.failed += 1
            job_metrics.increment("reminder_errors")
            logger.exception("Failed to send reminder for task %s", task.id, extra={"task_id": task.id})
        else:
            summary.succeeded += 1

    job_metrics.increment("reminders_sent", summary.succeeded)
    logger.info(
        "Reminder sweep finished: %s sent, %s errors",
        summary.succeeded,
        summary.failed,
        extra=summary.as_dict(),
    )
    return summary


__all__ = [
    "SweepSummary",
    "archival_cutoff",
    "reminder_window",
    "run_archival_sweep",
    "run_reminder_sweep",
]
