"""Structured JSON logging shared by the API, the RQ worker and the sweep scheduler.

Every line carries the request id bound in :mod:`taskflow.core.context`; lines
written while an RQ job is executing also carry that job's id.
"""

from __future__ import annotations

import json
import logging
import logging.config
from datetime import datetime, timezone
from typing import Any

from rq import get_current_job

from .config import Settings
from .context import UNBOUND_REQUEST_ID, get_request_id

# Attributes every LogRecord has; anything else on a record came from ``extra``.
_STANDARD_RECORD_ATTRS = frozenset(logging.makeLogRecord({}).__dict__) | {"message", "asctime", "taskName"}
_CONTEXT_ATTRS = ("request_id", "job_id")

_THIRD_PARTY_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access", "rq.worker", "rq.queue")


class JsonLogFormatter(logging.Formatter):
    """Render each record as one JSON object per line."""

    def __init__(self, *, defaults: dict[str, Any] | None = None, datefmt: str | None = None) -> None:
        super().__init__(datefmt=datefmt)
        self._defaults = dict(defaults or {})

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", UNBOUND_REQUEST_ID),
            **self._defaults,
        }
        job_id = getattr(record, "job_id", None)
        if job_id is not None:
            payload["job_id"] = job_id

        for key, value in record.__dict__.items():
            if key in _STANDARD_RECORD_ATTRS or key in _CONTEXT_ATTRS:
                continue
            payload.setdefault(key, _jsonable(value))

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack"] = self.formatStack(record.stack_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return str(value)
    return value


class RequestContextFilter(logging.Filter):
    """Stamp records with the bound request id and the running RQ job, if any."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        record.request_id = get_request_id()
        job = get_current_job()
        record.job_id = job.id if job is not None else None
        return True


def configure_logging(settings: Settings) -> None:
    """Route the root logger and the uvicorn/RQ loggers through one JSON handler."""

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.captureWarnings(True)

    loggers: dict[str, Any] = {"": {"handlers": ["default"], "level": level}}
    for name in _THIRD_PARTY_LOGGERS:
        loggers[name] = {"handlers": ["default"], "level": level, "propagate": False}
    # SQL echo is controlled by ``db_echo`` on the engine, not by the log level.
    loggers["sqlalchemy.engine"] = {"level": logging.INFO if settings.db_echo else logging.WARNING}

    logging.config.dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonLogFormatter,
                    "defaults": {
                        "service": settings.project_name,
                        "environment": settings.environment,
                        "version": settings.version,
                    },
                }
            },
            "filters": {"request_context": {"()": RequestContextFilter}},
            "handlers": {
                "default": {
                    "class": "logging.StreamHandler",
                    "stream": "ext://sys.stdout",
                    "formatter": "json",
                    "level": level,
                    "filters": ["request_context"],
                }
            },
            "loggers": loggers,
        }
    )


__all__ = ["JsonLogFormatter", "RequestContextFilter", "configure_logging"]
