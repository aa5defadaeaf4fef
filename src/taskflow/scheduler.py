"""Periodic trigger for the archival and reminder sweeps.

Any number of scheduler processes may run; ``schedule_due_sweeps`` only
enqueues a sweep once per configured interval.
"""

from __future__ import annotations

import logging
import threading

from .core.config import get_settings
from .core.jobs import JobQueueUnavailableError, schedule_due_sweeps
from .core.logging import configure_logging

logger = logging.getLogger(__name__)


def tick() -> list[str]:
    """Run one scheduling pass; Redis outages are logged and retried next poll."""

    try:
        enqueued = schedule_due_sweeps()
    except JobQueueUnavailableError:
        logger.warning("Job queue unavailable; sweeps not scheduled this poll", exc_info=True)
        return []
    if enqueued:
        logger.info("Scheduled sweeps: %s", ", ".join(enqueued), extra={"sweeps": enqueued})
    return enqueued


def run(stop_event: threading.Event | None = None) -> None:
    """Poll until ``stop_event`` is set (forever when run from the command line)."""

    settings = get_settings()
    configure_logging(settings)
    stop_event = stop_event or threading.Event()
    logger.info(
        "Sweep scheduler started",
        extra={"poll_seconds": settings.scheduler_poll_seconds},
    )
    while not stop_event.is_set():
        tick()
        stop_event.wait(settings.scheduler_poll_seconds)


if __name__ == "__main__":  # pragma: no cover - script entry point
    run()
