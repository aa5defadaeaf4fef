from __future__ import annotations

import csv
import io
from datetime import datetime, timezone
from typing import TYPE_CHECKING

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.core.jobs import JobQueueUnavailableError
from taskflow.core.notifications import NotificationKind
from taskflow.errors import InternalError, ServiceUnavailableError
from taskflow.models import Task, TaskPriority, TaskStatus, User
from taskflow.services import TaskExportService, request_export
from taskflow.services.exports import EXPORT_HEADERS, export_filename

if TYPE_CHECKING:
    from conftest import RecordingSender

EXPORT_DAY = datetime(2024, 5, 1, 8, 0, tzinfo=timezone.utc)


def _rows(content: bytes) -> list[list[str]]:
    return list(csv.reader(io.StringIO(content.decode("utf-8"))))


async def test_report_contains_assigned_tasks_with_people_names(
    session: AsyncSession,
    admin: User,
    member: User,
) -> None:
    session.add(
        Task(
            title="Write docs",
            description="API guide",
            priority=TaskPriority.HIGH,
            status=TaskStatus.IN_PROGRESS,
            due_date=datetime(2024, 5, 3, 17, 0, tzinfo=timezone.utc),
            creator_id=admin.id,
            assignee_id=member.id,
        )
    )
    session.add(Task(title="Not mine", creator_id=admin.id))
    await session.commit()

    report = await TaskExportService(session, clock=lambda: EXPORT_DAY).build_report(member)

    header, *rows = _rows(report.content)
    assert tuple(header) == EXPORT_HEADERS
    assert report.row_count == 1
    [row] = rows
    assert row[:4] == ["Write docs", "API guide", "in_progress", "high"]
    assert row[4] == "2024-05-03T17:00:00+00:00"
    assert row[6:] == ["Ada Admin", "Mia Member"]
    assert report.filename == "tasks_export_2024-05-01.csv"


async def test_empty_export_is_header_only_and_still_delivered(
    session: AsyncSession,
    member: User,
    sender: RecordingSender,
) -> None:
    report = await TaskExportService(session, clock=lambda: EXPORT_DAY).deliver(member.id)

    assert report is not None
    assert report.row_count == 0
    assert _rows(report.content) == [list(EXPORT_HEADERS)]
    [sent] = sender.sent
    assert sent.kind is NotificationKind.DATA_EXPORT
    assert sent.email == member.email
    [attachment] = sent.payload.attachments
    assert attachment.filename == export_filename(EXPORT_DAY.date())
    assert attachment.mimetype == "text/csv"


async def test_export_for_missing_user_is_skipped(session: AsyncSession, sender: RecordingSender) -> None:
    assert await TaskExportService(session).deliver(4242) is None
    assert sender.sent == []


def test_request_export_returns_the_queued_job() -> None:
    user = User(id=9, email="mia@example.com", first_name="Mia", last_name="Member")
    requested: list[int] = []

    def enqueue(user_id: int) -> str:
        requested.append(user_id)
        return "job-1"

    assert request_export(user, enqueue=enqueue) == "job-1"
    assert requested == [9]


@pytest.mark.parametrize(
    ("error", "expected"),
    [
        (JobQueueUnavailableError("redis down"), ServiceUnavailableError),
        (RuntimeError("pickling failed"), InternalError),
    ],
)
def test_request_export_distinguishes_unavailable_from_internal(error: Exception, expected: type) -> None:
    user = User(id=9, email="mia@example.com", first_name="Mia", last_name="Member")

    def enqueue(user_id: int) -> None:
        raise error

    with pytest.raises(expected) as excinfo:
        request_export(user, enqueue=enqueue)

    assert excinfo.value.status_code in (503, 500)
    assert excinfo.value.__cause__ is error


def test_request_export_maps_redis_outage_to_service_unavailable(fake_redis, monkeypatch) -> None:
    def broken_enqueue(*args, **kwargs):
        raise RedisConnectionError("connection refused")

    monkeypatch.setattr("rq.Queue.enqueue", broken_enqueue)
    user = User(id=9, email="mia@example.com", first_name="Mia", last_name="Member")

    with pytest.raises(ServiceUnavailableError) as excinfo:
        request_export(user)

    assert excinfo.value.code == "service_unavailable"
