"""Liveness and metrics endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Response

from ...core.metrics import job_metrics
from ...schemas import HealthCheckResponse

router = APIRouter(tags=["system"])


@router.get("/healthz", response_model=HealthCheckResponse, summary="Health check")
async def healthz() -> HealthCheckResponse:
    return HealthCheckResponse()


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    payload, content_type = job_metrics.render()
    return Response(content=payload, media_type=content_type)
