"""FastAPI application factory and entry point."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

import uvicorn
from fastapi import FastAPI

from .api.routers import api_router, health_router
from .core.config import Settings, get_settings
from .core.jobs import close_job_connection
from .core.logging import configure_logging
from .core.middleware import CorrelationIdMiddleware
from .deps import SettingsDependency
from .errors import register_exception_handlers
from .schemas.system import RootResponse


def _normalise_prefix(raw_prefix: str) -> str:
    prefix = raw_prefix.strip()
    if prefix and not prefix.startswith("/"):
        prefix = f"/{prefix}"
    prefix = prefix.rstrip("/")
    return "" if prefix == "/" else prefix


@asynccontextmanager
async def _lifespan(application: FastAPI) -> AsyncIterator[None]:
    yield
    close_job_connection()


def create_app(settings: Settings | None = None) -> FastAPI:
    """Instantiate and configure the FastAPI application."""

    settings = settings or get_settings()
    configure_logging(settings)

    router_prefix = _normalise_prefix(settings.api_prefix)
    application = FastAPI(
        title=settings.project_name,
        version=settings.version,
        summary="Task lifecycle, authorization and background job service.",
        openapi_url=f"{router_prefix}/openapi.json",
        lifespan=_lifespan,
    )
    application.state.settings = settings

    application.add_middleware(CorrelationIdMiddleware, slow_request_ms=settings.slow_request_ms)
    application.include_router(api_router, prefix=router_prefix)
    application.include_router(health_router)

    @application.get(f"{router_prefix}/metadata", response_model=RootResponse, summary="Service metadata")
    async def read_api_metadata(settings: SettingsDependency) -> RootResponse:
        return RootResponse(
            name=settings.project_name,
            environment=settings.environment,
            version=settings.version,
            api_prefix=router_prefix or "/",
        )

    register_exception_handlers(application)
    return application


def run() -> None:
    """Console entry point for ``taskflow-api``."""

    settings = get_settings()
    uvicorn.run(
        "taskflow.main:create_app",
        factory=True,
        host=settings.app_host,
        port=settings.app_port,
        reload=settings.reload,
        log_config=None,
    )


if __name__ == "__main__":  # pragma: no cover - manual execution entry-point
    run()
