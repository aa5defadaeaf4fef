"""Job delivering task lifecycle notifications."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict
from typing import Any

from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.context import request_context
from ..core.instrumentation import job_run
from ..core.jobs import execute_in_job_session
from ..services.notifications import NotificationOutcome, NotificationService

logger = logging.getLogger(__name__)


async def _deliver(task_id: int, event: str) -> NotificationOutcome:
    async def _invoke(session: AsyncSession) -> NotificationOutcome:
        return await NotificationService(session).deliver(task_id, event)

    return await execute_in_job_session(_invoke)


def deliver_task_notification_job(
    task_id: int,
    event: str,
    request_id: str | None = None,
) -> dict[str, Any]:
    """Send the notification for ``event`` on ``task_id``.

    Delivery errors propagate so RQ retries the job.
    """

    with request_context(request_id), job_run("deliver_task_notification"):
        outcome = asyncio.run(_deliver(task_id, event))
        logger.info(
            "Notification job finished for task %s",
            task_id,
            extra={"task_id": task_id, "event": event, "delivered": outcome.delivered},
        )
        return asdict(outcome)


__all__ = ["deliver_task_notification_job"]
