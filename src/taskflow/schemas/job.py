"""Schemas describing queued background work."""

from __future__ import annotations

from pydantic import BaseModel, Field


class JobEnqueuedResponse(BaseModel):
    """Acknowledgement returned when work has been queued."""

    job_id: str = Field(description="Identifier of the queued job")
    status: str = Field(default="queued")
    message: str
