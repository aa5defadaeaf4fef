"""Lifecycle event dispatch and notification delivery."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable

from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.jobs import JobQueueUnavailableError, enqueue_task_notification
from ..core.metrics import job_metrics
from ..core.notifications import (
    Attachment,
    NotificationKind,
    NotificationPayload,
    NotificationSender,
    get_notification_sender,
)
from ..models import Task, User
from ..repositories import TaskRepository, UserRepository

logger = logging.getLogger(__name__)


class TaskEvent(str, Enum):
    """Signals emitted after a lifecycle mutation has been committed."""

    CREATED = "created"
    ASSIGNED = "assigned"
    COMPLETED = "completed"


EnqueueCallable = Callable[[int, str], Any]


class NotificationDispatcher:
    """Hand lifecycle events to the notification queue without failing the caller.

    ``emit`` never raises: an unreachable queue or any other enqueue error is
    logged and counted, and the method reports ``False``.
    """

    def __init__(self, enqueue: EnqueueCallable | None = None) -> None:
        self._enqueue = enqueue or enqueue_task_notification

    def emit(self, event: TaskEvent, task_id: int) -> bool:
        try:
            self._enqueue(task_id, event.value)
        except JobQueueUnavailableError:
            logger.warning(
                "Notification queue unavailable; %s event for task %s dropped",
                event.value,
                task_id,
                extra={"task_id": task_id, "event": event.value},
            )
            return False
        except Exception:
            job_metrics.increment("enqueue_failures")
            logger.warning(
                "Failed to enqueue %s notification for task %s",
                event.value,
                task_id,
                exc_info=True,
                extra={"task_id": task_id, "event": event.value},
            )
            return False
        return True


@dataclass(slots=True)
class NotificationOutcome:
    task_id: int
    event: str
    delivered: bool
    recipient_id: int | None = None
    reason: str | None = None


def _describe_due_date(task: Task) -> str:
    if task.due_date is None:
        return "No due date"
    return task.due_date.strftime("%Y-%m-%d %H:%M UTC")


def render_assignment(task: Task, assignee: User) -> NotificationPayload:
    return NotificationPayload(
        subject=f"You have been assigned to: {task.title}",
        body=(
            f"Hello {assignee.full_name},\n\n"
            f"You have been assigned the task \"{task.title}\".\n"
            f"Priority: {task.priority.value}\n"
            f"Due: {_describe_due_date(task)}\n"
        ),
    )


def render_completion(task: Task, creator: User) -> NotificationPayload:
    completed = task.completed_at.strftime("%Y-%m-%d %H:%M UTC") if task.completed_at else "just now"
    return NotificationPayload(
        subject=f"Task completed: {task.title}",
        body=f"Hello {creator.full_name},\n\nThe task \"{task.title}\" was completed at {completed}.\n",
    )


def render_reminder(task: Task, assignee: User) -> NotificationPayload:
    return NotificationPayload(
        subject=f"Reminder: {task.title} is due tomorrow",
        body=(
            f"Hello {assignee.full_name},\n\n"
            f"The task \"{task.title}\" is due on {_describe_due_date(task)}.\n"
        ),
    )


def render_export(user: User, attachment: Attachment) -> NotificationPayload:
    return NotificationPayload(
        subject="Your task export is ready",
        body=f"Hello {user.full_name},\n\nYour task export is attached ({attachment.filename}).\n",
        attachments=[attachment],
    )


class NotificationService:
    """Resolve recipients and hand rendered notifications to the sender.

    Transport failures propagate so the job layer can retry them.
    """

    def __init__(self, session: AsyncSession, *, sender: NotificationSender | None = None) -> None:
        self._session = session
        self._sender = sender
        self._tasks = TaskRepository(session)
        self._users = UserRepository(session)

    @property
    def sender(self) -> NotificationSender:
        return self._sender or get_notification_sender()

    async def _send(self, kind: NotificationKind, recipient: User, payload: NotificationPayload) -> None:
        await asyncio.to_thread(self.sender.send, kind, recipient, payload)

    def _skip(self, task_id: int, event: str, reason: str) -> NotificationOutcome:
        job_metrics.increment("notifications_skipped")
        logger.warning(
            "Skipping %s notification for task %s: %s",
            event,
            task_id,
            reason,
            extra={"task_id": task_id, "event": event},
        )
        return NotificationOutcome(task_id=task_id, event=event, delivered=False, reason=reason)

    async def deliver(self, task_id: int, event: TaskEvent | str) -> NotificationOutcome:
        """Deliver the notification belonging to ``event`` for ``task_id``."""

        try:
            resolved = TaskEvent(event)
        except ValueError:
            return self._skip(task_id, str(event), "unknown event")

        task = await self._tasks.get(task_id)
        if task is None:
            return self._skip(task_id, resolved.value, "task no longer exists")

        if resolved is TaskEvent.COMPLETED:
            recipient_id: int | None = task.creator_id
            kind = NotificationKind.TASK_COMPLETED
        else:
            recipient_id = task.assignee_id
            kind = NotificationKind.TASK_ASSIGNED
        recipient = await self._users.get(recipient_id) if recipient_id is not None else None
        if recipient is None:
            return self._skip(task_id, resolved.value, "no recipient")

        if kind is NotificationKind.TASK_COMPLETED:
            payload = render_completion(task, recipient)
        else:
            payload = render_assignment(task, recipient)
        try:
            await self._send(kind, recipient, payload)
        except Exception:
            job_metrics.increment("notifications_failed")
            logger.warning(
                "Failed to send %s notification for task %s",
                resolved.value,
                task_id,
                extra={"task_id": task_id, "event": resolved.value, "recipient_id": recipient.id},
            )
            raise
        job_metrics.increment("notifications_sent")
        logger.info(
            "Sent %s notification for task %s",
            resolved.value,
            task_id,
            extra={"task_id": task_id, "event": resolved.value, "recipient_id": recipient.id},
        )
        return NotificationOutcome(
            task_id=task_id,
            event=resolved.value,
            delivered=True,
            recipient_id=recipient.id,
        )

    async def send_reminder(self, task: Task, assignee: User) -> None:
        await self._send(NotificationKind.TASK_REMINDER, assignee, render_reminder(task, assignee))

    async def send_export(self, user: User, attachment: Attachment) -> None:
        await self._send(NotificationKind.DATA_EXPORT, user, render_export(user, attachment))


__all__ = [
    "NotificationDispatcher",
    "NotificationOutcome",
    "NotificationService",
    "TaskEvent",
    "render_assignment",
    "render_completion",
    "render_export",
    "render_reminder",
]
