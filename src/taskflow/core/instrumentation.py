"""Query timing, per-request query counts and job run logging."""

from __future__ import annotations

import logging
import time
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlalchemy.ext.asyncio import AsyncEngine

from .config import Settings, get_settings

logger = logging.getLogger(__name__)

_clock = time.perf_counter
_START_KEY = "taskflow_query_started"
_SQL_PREVIEW_CHARS = 200
_instrumented: "weakref.WeakSet[Engine]" = weakref.WeakSet()


@dataclass
class QueryCounter:
    count: int = 0


_query_counter: ContextVar[QueryCounter | None] = ContextVar("taskflow_query_counter", default=None)


@contextmanager
def count_queries() -> Iterator[QueryCounter]:
    """Count the statements executed while the block is active."""

    counter = QueryCounter()
    token = _query_counter.set(counter)
    try:
        yield counter
    finally:
        _query_counter.reset(token)


def _elapsed_ms(started: float) -> float:
    return round((_clock() - started) * 1000, 2)


class _QueryTimer:
    def __init__(self, slow_ms: int, very_slow_ms: int) -> None:
        self.slow_ms = slow_ms
        self.very_slow_ms = very_slow_ms

    def before(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        conn.info.setdefault(_START_KEY, []).append(_clock())

    def after(self, conn: Any, cursor: Any, statement: str, parameters: Any, context: Any, executemany: bool) -> None:
        starts = conn.info.get(_START_KEY)
        if not starts:
            return
        duration_ms = _elapsed_ms(starts.pop())
        counter = _query_counter.get()
        if counter is not None:
            counter.count += 1

        if duration_ms > self.very_slow_ms:
            logger.error(
                "Very slow query took %sms",
                duration_ms,
                extra={"duration_ms": duration_ms, "statement": statement},
            )
        elif duration_ms > self.slow_ms:
            logger.warning(
                "Slow query took %sms",
                duration_ms,
                extra={"duration_ms": duration_ms, "statement": statement[:_SQL_PREVIEW_CHARS]},
            )


def instrument_engine(engine: AsyncEngine | Engine, settings: Settings | None = None) -> None:
    """Time every statement run on ``engine`` and log the slow ones."""

    settings = settings or get_settings()
    target = engine.sync_engine if isinstance(engine, AsyncEngine) else engine
    if target in _instrumented:
        return
    timer = _QueryTimer(settings.slow_query_ms, settings.very_slow_query_ms)
    event.listen(target, "before_cursor_execute", timer.before)
    event.listen(target, "after_cursor_execute", timer.after)
    _instrumented.add(target)


@contextmanager
def job_run(name: str) -> Iterator[None]:
    """Log the start, completion or failure of a background job with its duration."""

    started = _clock()
    logger.info("Starting job %s", name, extra={"job_name": name})
    with count_queries() as queries:
        try:
            yield
        except Exception as exc:
            duration_ms = _elapsed_ms(started)
            logger.error(
                "Job %s failed after %sms",
                name,
                duration_ms,
                extra={
                    "job_name": name,
                    "duration_ms": duration_ms,
                    "query_count": queries.count,
                    "error_class": type(exc).__name__,
                },
            )
            raise
    duration_ms = _elapsed_ms(started)
    logger.info(
        "Completed job %s in %sms",
        name,
        duration_ms,
        extra={"job_name": name, "duration_ms": duration_ms, "query_count": queries.count},
    )


__all__ = ["QueryCounter", "count_queries", "instrument_engine", "job_run"]
