"""RQ integration: queues, enqueue helpers and the periodic sweep trigger."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from datetime import datetime, timezone
from threading import RLock
from types import TracebackType
from typing import TYPE_CHECKING, Any, TypeVar
from uuid import uuid4

from redis import Redis
from redis.exceptions import RedisError
from rq import Queue
from rq.job import Job, Retry

from .config import Settings, get_settings
from .context import current_request_id
from .metrics import job_metrics

if TYPE_CHECKING:
    from sqlmodel.ext.asyncio.session import AsyncSession

logger = logging.getLogger(__name__)

T = TypeVar("T")

ARCHIVAL_SWEEP = "archival"
REMINDER_SWEEP = "reminder"
SWEEP_MARKER_PREFIX = "taskflow:sweep:"

_job_connection: Redis | None = None
_job_queues: dict[str, Queue] = {}
_job_lock = RLock()
_job_session_factory: Callable[[], AbstractAsyncContextManager["AsyncSession"]] | None = None


class JobQueueUnavailableError(RuntimeError):
    """Raised when the Redis-backed job queue cannot be reached."""


def set_job_connection(connection: Redis | None) -> None:
    """Inject a Redis connection for job queue operations (primarily for tests)."""

    global _job_connection
    with _job_lock:
        _job_connection = connection
        _job_queues.clear()


def close_job_connection() -> None:
    """Close the active Redis connection if one exists."""

    global _job_connection
    with _job_lock:
        connection = _job_connection
        if connection is not None:
            try:
                connection.close()
            except RedisError:  # pragma: no cover - closing failures are best-effort
                logger.debug("Failed to close Redis connection cleanly.", exc_info=True)
        _job_connection = None
        _job_queues.clear()


def set_job_session_factory(
    factory: Callable[[], AbstractAsyncContextManager["AsyncSession"]] | None,
) -> None:
    """Override the session factory used when executing jobs."""

    global _job_session_factory
    with _job_lock:
        _job_session_factory = factory


@asynccontextmanager
async def _default_job_session_factory() -> AsyncIterator["AsyncSession"]:
    from ..db.session import job_session_maker  # Local import to avoid circular dependency

    async with job_session_maker() as session:
        yield session


async def execute_in_job_session(
    callback: Callable[["AsyncSession"], Awaitable[T]],
) -> T:
    """Execute a coroutine with a managed database session for job processing."""

    factory = _job_session_factory or _default_job_session_factory
    async with factory() as session:
        return await callback(session)


def get_job_connection() -> Redis:
    """Return the Redis connection shared by every queue."""

    global _job_connection
    with _job_lock:
        if _job_connection is not None:
            return _job_connection
        settings = get_settings()
        try:
            connection = Redis.from_url(settings.redis_url)
            connection.ping()
        except RedisError as exc:  # pragma: no cover - network failures
            logger.error("Redis job queue unavailable.", exc_info=True)
            raise JobQueueUnavailableError("Job queue is unavailable.") from exc
        _job_connection = connection
        return connection


def get_queue(name: str) -> Queue:
    """Return the queue called ``name`` bound to the shared connection."""

    with _job_lock:
        queue = _job_queues.get(name)
        if queue is not None:
            return queue
        connection = get_job_connection()
        timeout = get_settings().job_default_timeout or None
        queue = Queue(name, connection=connection, default_timeout=timeout)
        _job_queues[name] = queue
        return queue


def get_job_queues() -> list[Queue]:
    """Return every queue in worker priority order."""

    settings = get_settings()
    return [
        get_queue(settings.notification_queue_name),
        get_queue(settings.export_queue_name),
        get_queue(settings.maintenance_queue_name),
    ]


def report_job_failure(
    job: Job,
    connection: Redis,
    exc_type: type[BaseException],
    exc_value: BaseException,
    traceback: TracebackType | None,
) -> None:
    """RQ failure callback: record every failed attempt."""

    job_metrics.increment("job_failures")
    logger.warning(
        "Background job attempt failed",
        extra={
            "job_id": job.id,
            "queue": job.origin,
            "function": job.func_name,
            "retries_left": job.retries_left,
            "error_class": exc_type.__name__,
            "error": str(exc_value),
        },
    )


def _build_retry(max_retries: int, settings: Settings) -> Retry | None:
    if max_retries <= 0:
        return None
    intervals = settings.job_retry_backoff_seconds or [0]
    return Retry(max=max_retries, interval=intervals)


def _enqueue(
    queue_name: str,
    func: Callable[..., Any],
    *args: Any,
    job_prefix: str,
    max_retries: int,
    description: str,
    request_id: str | None,
) -> Job:
    settings = get_settings()
    request_id = request_id or current_request_id()
    result_ttl = settings.job_result_ttl_seconds or None
    try:
        queue = get_queue(queue_name)
        job = queue.enqueue(
            func,
            *args,
            request_id=request_id,
            job_id=f"{job_prefix}:{uuid4()}",
            retry=_build_retry(max_retries, settings),
            result_ttl=result_ttl,
            failure_ttl=result_ttl,
            description=description,
            job_timeout=settings.job_default_timeout or None,
            on_failure=report_job_failure,
        )
    except JobQueueUnavailableError:
        job_metrics.increment("enqueue_failures")
        raise
    except RedisError as exc:
        job_metrics.increment("enqueue_failures")
        logger.error("Failed to enqueue %s job", job_prefix, exc_info=True)
        raise JobQueueUnavailableError("Unable to enqueue job; Redis is unavailable.") from exc
    job_metrics.increment("jobs_enqueued")
    logger.info(
        "Enqueued %s job %s",
        job_prefix,
        job.id,
        extra={"job_id": job.id, "queue": queue_name},
    )
    return job


def enqueue_task_notification(task_id: int, event: str, *, request_id: str | None = None) -> Job:
    """Enqueue delivery of the notification for a task lifecycle ``event``."""

    from ..jobs.notifications import deliver_task_notification_job

    settings = get_settings()
    return _enqueue(
        settings.notification_queue_name,
        deliver_task_notification_job,
        task_id,
        event,
        job_prefix=f"task-notification:{task_id}:{event}",
        max_retries=settings.notification_max_retries,
        description=f"Notify {event} for task {task_id}",
        request_id=request_id,
    )


def enqueue_data_export(user_id: int, *, request_id: str | None = None) -> Job:
    """Enqueue generation and delivery of a user's task export."""

    from ..jobs.exports import export_user_tasks_job

    settings = get_settings()
    return _enqueue(
        settings.export_queue_name,
        export_user_tasks_job,
        user_id,
        job_prefix=f"data-export:{user_id}",
        max_retries=settings.export_max_retries,
        description=f"Export tasks for user {user_id}",
        request_id=request_id,
    )


def enqueue_archival_sweep(*, request_id: str | None = None) -> Job:
    from ..jobs.maintenance import archive_completed_tasks_job

    settings = get_settings()
    return _enqueue(
        settings.maintenance_queue_name,
        archive_completed_tasks_job,
        job_prefix="archival-sweep",
        max_retries=settings.archival_max_retries,
        description="Archive tasks completed before the retention window",
        request_id=request_id,
    )


def enqueue_reminder_sweep(*, request_id: str | None = None) -> Job:
    from ..jobs.maintenance import send_due_date_reminders_job

    settings = get_settings()
    return _enqueue(
        settings.maintenance_queue_name,
        send_due_date_reminders_job,
        job_prefix="reminder-sweep",
        max_retries=settings.reminder_max_retries,
        description="Send reminders for tasks due tomorrow",
        request_id=request_id,
    )


def _sweep_schedule(settings: Settings) -> list[tuple[str, int, Callable[..., Job]]]:
    return [
        (ARCHIVAL_SWEEP, settings.archival_interval_seconds, enqueue_archival_sweep),
        (REMINDER_SWEEP, settings.reminder_interval_seconds, enqueue_reminder_sweep),
    ]


def schedule_due_sweeps(now: datetime | None = None) -> list[str]:
    """Enqueue every sweep whose interval has elapsed; return their names.

    A Redis ``SET NX EX`` marker per sweep guarantees at most one enqueue
    per interval across any number of scheduler processes. The marker is
    released again when the enqueue itself fails so the next poll retries.
    """

    settings = get_settings()
    connection = get_job_connection()
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    enqueued: list[str] = []
    for name, interval, enqueue in _sweep_schedule(settings):
        marker = f"{SWEEP_MARKER_PREFIX}{name}"
        try:
            acquired = connection.set(marker, stamp, nx=True, ex=interval)
        except RedisError as exc:
            raise JobQueueUnavailableError("Unable to reach Redis for sweep scheduling.") from exc
        if not acquired:
            continue
        try:
            enqueue()
        except JobQueueUnavailableError:
            connection.delete(marker)
            logger.warning("Could not enqueue %s sweep; will retry on next poll", name)
            continue
        enqueued.append(name)
    return enqueued


__all__ = [
    "ARCHIVAL_SWEEP",
    "JobQueueUnavailableError",
    "REMINDER_SWEEP",
    "close_job_connection",
    "enqueue_archival_sweep",
    "enqueue_data_export",
    "enqueue_reminder_sweep",
    "enqueue_task_notification",
    "execute_in_job_session",
    "get_job_connection",
    "get_job_queues",
    "get_queue",
    "report_job_failure",
    "schedule_due_sweeps",
    "set_job_connection",
    "set_job_session_factory",
]
