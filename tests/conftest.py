from __future__ import annotations

import os

os.environ.setdefault("TASKFLOW_ENVIRONMENT", "test")
os.environ.setdefault("TASKFLOW_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("TASKFLOW_JWT_SECRET_KEY", "test-secret")

from collections.abc import AsyncIterator, Iterator
from dataclasses import dataclass, field
from typing import Any

import pytest
from fakeredis import FakeRedis
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel.ext.asyncio.session import AsyncSession

from taskflow.core.instrumentation import instrument_engine
from taskflow.core.jobs import close_job_connection, set_job_connection
from taskflow.core.metrics import job_metrics
from taskflow.core.notifications import NotificationKind, NotificationPayload, set_notification_sender
from taskflow.db.base import metadata
from taskflow.models import User, UserRole
from taskflow.services import NotificationDispatcher


@dataclass
class SentNotification:
    kind: NotificationKind
    recipient_id: int | None
    email: str
    payload: NotificationPayload


@dataclass
class RecordingSender:
    """In-memory ``NotificationSender`` capturing every delivery."""

    sent: list[SentNotification] = field(default_factory=list)
    fail_for: set[str] = field(default_factory=set)

    def send(self, kind: NotificationKind, recipient: Any, payload: NotificationPayload) -> None:
        if recipient.email in self.fail_for:
            raise RuntimeError(f"mailbox unavailable for {recipient.email}")
        self.sent.append(
            SentNotification(
                kind=kind,
                recipient_id=getattr(recipient, "id", None),
                email=recipient.email,
                payload=payload,
            )
        )


@dataclass
class RecordingEnqueue:
    """Stand-in for the notification queue used by ``NotificationDispatcher``."""

    calls: list[tuple[int, str]] = field(default_factory=list)
    error: Exception | None = None

    def __call__(self, task_id: int, event: str) -> None:
        if self.error is not None:
            raise self.error
        self.calls.append((task_id, event))


@pytest.fixture()
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    instrument_engine(engine)
    async with engine.begin() as connection:
        await connection.run_sync(metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture()
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture()
async def session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as db_session:
        yield db_session


async def _make_user(session: AsyncSession, email: str, first: str, last: str, role: UserRole) -> User:
    user = User(email=email, first_name=first, last_name=last, role=role)
    session.add(user)
    await session.commit()
    await session.refresh(user)
    return user


@pytest.fixture()
async def admin(session: AsyncSession) -> User:
    return await _make_user(session, "admin@example.com", "Ada", "Admin", UserRole.ADMIN)


@pytest.fixture()
async def manager(session: AsyncSession) -> User:
    return await _make_user(session, "manager@example.com", "Max", "Manager", UserRole.MANAGER)


@pytest.fixture()
async def member(session: AsyncSession) -> User:
    return await _make_user(session, "member@example.com", "Mia", "Member", UserRole.MEMBER)


@pytest.fixture()
async def other_member(session: AsyncSession) -> User:
    return await _make_user(session, "other@example.com", "Olly", "Other", UserRole.MEMBER)


@pytest.fixture()
def recorded_events() -> RecordingEnqueue:
    return RecordingEnqueue()


@pytest.fixture()
def dispatcher(recorded_events: RecordingEnqueue) -> NotificationDispatcher:
    return NotificationDispatcher(enqueue=recorded_events)


@pytest.fixture()
def sender() -> Iterator[RecordingSender]:
    recording = RecordingSender()
    set_notification_sender(recording)
    try:
        yield recording
    finally:
        set_notification_sender(None)


@pytest.fixture()
def fake_redis() -> Iterator[FakeRedis]:
    connection = FakeRedis(decode_responses=False)
    set_job_connection(connection)
    try:
        yield connection
    finally:
        close_job_connection()


@pytest.fixture(autouse=True)
def reset_job_metrics() -> Iterator[None]:
    job_metrics.reset()
    yield
    job_metrics.reset()
