from __future__ import annotations

import smtplib
from typing import TYPE_CHECKING

import pytest
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.core.config import Settings
from taskflow.core.jobs import JobQueueUnavailableError
from taskflow.core.metrics import job_metrics
from taskflow.core.notifications import (
    Attachment,
    NotificationDeliveryError,
    NotificationKind,
    NotificationPayload,
    SmtpNotificationSender,
)
from taskflow.models import Task, User
from taskflow.services import NotificationDispatcher, NotificationService, TaskEvent

if TYPE_CHECKING:
    from conftest import RecordingEnqueue, RecordingSender


async def _task(session: AsyncSession, creator: User, assignee: User | None = None) -> Task:
    task = Task(title="Ship release", creator_id=creator.id, assignee_id=assignee.id if assignee else None)
    session.add(task)
    await session.commit()
    await session.refresh(task)
    return task


async def test_dispatcher_forwards_event_values(recorded_events: RecordingEnqueue) -> None:
    dispatcher = NotificationDispatcher(enqueue=recorded_events)

    assert dispatcher.emit(TaskEvent.ASSIGNED, 7) is True
    assert recorded_events.calls == [(7, "assigned")]


@pytest.mark.parametrize("error", [JobQueueUnavailableError("down"), ConnectionError("reset")])
async def test_dispatcher_swallows_enqueue_failures(
    recorded_events: RecordingEnqueue,
    error: Exception,
    caplog: pytest.LogCaptureFixture,
) -> None:
    recorded_events.error = error
    dispatcher = NotificationDispatcher(enqueue=recorded_events)

    with caplog.at_level("WARNING", logger="taskflow.services.notifications"):
        assert dispatcher.emit(TaskEvent.COMPLETED, 3) is False

    assert any("task 3" in record.getMessage() for record in caplog.records)


async def test_assignment_notification_goes_to_assignee(
    session: AsyncSession,
    admin: User,
    member: User,
    sender: RecordingSender,
) -> None:
    task = await _task(session, admin, member)

    outcome = await NotificationService(session).deliver(task.id, TaskEvent.ASSIGNED)

    assert outcome.delivered is True
    assert outcome.recipient_id == member.id
    [sent] = sender.sent
    assert sent.kind is NotificationKind.TASK_ASSIGNED
    assert sent.email == member.email
    assert "Ship release" in sent.payload.subject
    assert job_metrics.snapshot()["notifications_sent"] == 1


async def test_created_event_is_delivered_like_assignment(
    session: AsyncSession,
    admin: User,
    member: User,
    sender: RecordingSender,
) -> None:
    task = await _task(session, admin, member)

    await NotificationService(session).deliver(task.id, "created")

    assert [item.kind for item in sender.sent] == [NotificationKind.TASK_ASSIGNED]


async def test_completion_notification_goes_to_creator_not_assignee(
    session: AsyncSession,
    admin: User,
    member: User,
    sender: RecordingSender,
) -> None:
    task = await _task(session, admin, member)

    await NotificationService(session).deliver(task.id, TaskEvent.COMPLETED)

    [sent] = sender.sent
    assert sent.kind is NotificationKind.TASK_COMPLETED
    assert sent.recipient_id == admin.id


@pytest.mark.parametrize("event", ["assigned", "created"])
async def test_missing_assignee_is_skipped_with_warning(
    session: AsyncSession,
    admin: User,
    sender: RecordingSender,
    event: str,
    caplog: pytest.LogCaptureFixture,
) -> None:
    task = await _task(session, admin)

    with caplog.at_level("WARNING"):
        outcome = await NotificationService(session).deliver(task.id, event)

    assert outcome.delivered is False
    assert outcome.reason == "no recipient"
    assert sender.sent == []
    assert job_metrics.snapshot()["notifications_skipped"] == 1
    assert any("Skipping" in record.getMessage() for record in caplog.records)


async def test_unknown_event_and_missing_task_are_skipped(
    session: AsyncSession,
    sender: RecordingSender,
) -> None:
    service = NotificationService(session)

    assert (await service.deliver(1, "archived")).reason == "unknown event"
    assert (await service.deliver(999, "assigned")).reason == "task no longer exists"
    assert sender.sent == []


async def test_delivery_failures_propagate_for_retry(
    session: AsyncSession,
    admin: User,
    member: User,
    sender: RecordingSender,
) -> None:
    task = await _task(session, admin, member)
    sender.fail_for.add(member.email)

    with pytest.raises(RuntimeError):
        await NotificationService(session).deliver(task.id, TaskEvent.ASSIGNED)

    snapshot = job_metrics.snapshot()
    assert snapshot["notifications_failed"] == 1
    assert snapshot["notifications_sent"] == 0


def test_smtp_sender_builds_message_with_attachment() -> None:
    settings = Settings(environment="test", mail_from="noreply@taskmanager.com")
    recipient = User(id=1, email="mia@example.com", first_name="Mia", last_name="Member")
    payload = NotificationPayload(
        subject="Your task export is ready",
        body="Attached.",
        attachments=[Attachment(filename="tasks_export_2024-05-01.csv", content=b"Title\n")],
    )

    message = SmtpNotificationSender(settings).build_message(NotificationKind.DATA_EXPORT, recipient, payload)

    assert message["From"] == "noreply@taskmanager.com"
    assert message["To"] == "mia@example.com"
    assert message["X-Notification-Kind"] == "data_export"
    [attachment] = list(message.iter_attachments())
    assert attachment.get_filename() == "tasks_export_2024-05-01.csv"
    assert attachment.get_payload(decode=True) == b"Title\n"


def test_smtp_sender_wraps_transport_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    def refuse(*args, **kwargs):
        raise smtplib.SMTPConnectError(421, b"busy")

    monkeypatch.setattr(smtplib, "SMTP", refuse)
    recipient = User(id=1, email="mia@example.com", first_name="Mia", last_name="Member")
    sender = SmtpNotificationSender(Settings(environment="test"))

    with pytest.raises(NotificationDeliveryError):
        sender.send(NotificationKind.TASK_REMINDER, recipient, NotificationPayload(subject="s", body="b"))
