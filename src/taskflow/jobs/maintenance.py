"""Jobs running the periodic archival and reminder sweeps."""

from __future__ import annotations

import asyncio
from typing import Any

from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.context import request_context
from ..core.instrumentation import job_run
from ..core.jobs import execute_in_job_session
from ..services.maintenance import SweepSummary, run_archival_sweep, run_reminder_sweep


async def _archive() -> SweepSummary:
    async def _invoke(session: AsyncSession) -> SweepSummary:
        return await run_archival_sweep(session)

    return await execute_in_job_session(_invoke)


async def _remind() -> SweepSummary:
    async def _invoke(session: AsyncSession) -> SweepSummary:
        return await run_reminder_sweep(session)

    return await execute_in_job_session(_invoke)


def archive_completed_tasks_job(request_id: str | None = None) -> dict[str, Any]:
    """Archive tasks completed before the retention window."""

    with request_context(request_id), job_run("archive_completed_tasks"):
        return asyncio.run(_archive()).as_dict()


def send_due_date_reminders_job(request_id: str | None = None) -> dict[str, Any]:
    """Remind assignees of tasks due tomorrow."""

    with request_context(request_id), job_run("send_due_date_reminders"):
        return asyncio.run(_remind()).as_dict()


__all__ = ["archive_completed_tasks_job", "send_due_date_reminders_job"]
