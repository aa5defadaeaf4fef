"""Job generating and delivering a user's task export."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from sqlmodel.ext.asyncio.session import AsyncSession

from ..core.context import request_context
from ..core.instrumentation import job_run
from ..core.jobs import execute_in_job_session
from ..services.exports import ExportReport, TaskExportService

logger = logging.getLogger(__name__)


async def _export(user_id: int) -> ExportReport | None:
    async def _invoke(session: AsyncSession) -> ExportReport | None:
        return await TaskExportService(session).deliver(user_id)

    return await execute_in_job_session(_invoke)


def export_user_tasks_job(user_id: int, request_id: str | None = None) -> dict[str, Any]:
    """Build the CSV export for ``user_id`` and mail it to them."""

    if user_id <= 0:
        logger.error("Data export requires a positive user id, got %s", user_id)
        return {"user_id": user_id, "delivered": False}

    with request_context(request_id), job_run("export_user_tasks"):
        report = asyncio.run(_export(user_id))
        if report is None:
            return {"user_id": user_id, "delivered": False}
        return {
            "user_id": user_id,
            "delivered": True,
            "filename": report.filename,
            "row_count": report.row_count,
        }


__all__ = ["export_user_tasks_job"]
