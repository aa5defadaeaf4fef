"""Entry point for running the background job worker."""

from __future__ import annotations

import logging

from rq import Worker

from .core.config import get_settings
from .core.jobs import get_job_connection, get_job_queues
from .core.logging import configure_logging

logger = logging.getLogger(__name__)


def run() -> None:
    """Start an RQ worker bound to the notification, export and maintenance queues."""

    settings = get_settings()
    configure_logging(settings)

    connection = get_job_connection()
    queues = get_job_queues()
    worker_name = settings.job_worker_name or None
    queue_names = [queue.name for queue in queues]

    logger.info(
        "Starting RQ worker '%s' listening on queues %s",
        worker_name or "anonymous",
        ", ".join(queue_names),
        extra={"queues": queue_names, "worker_name": worker_name or "anonymous"},
    )
    worker = Worker(queues, connection=connection, name=worker_name)
    worker.work(with_scheduler=True)


if __name__ == "__main__":  # pragma: no cover - script entry point
    run()
