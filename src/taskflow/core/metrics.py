"""Prometheus counters for background job and notification behaviour."""

from __future__ import annotations

from threading import Lock

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, generate_latest

_COUNTERS: dict[str, str] = {
    "jobs_enqueued": "Jobs accepted by a queue.",
    "enqueue_failures": "Enqueue attempts that failed or found Redis unreachable.",
    "job_failures": "Failed job attempts, retried or not.",
    "notifications_sent": "Lifecycle notifications handed to the sender.",
    "notifications_skipped": "Lifecycle notifications skipped for lack of a recipient or task.",
    "notifications_failed": "Lifecycle notifications the sender failed to deliver.",
    "archived_tasks": "Tasks archived by the archival sweep.",
    "archival_errors": "Rows the archival sweep failed to archive.",
    "reminders_sent": "Due-date reminders handed to the sender.",
    "reminder_errors": "Due-date reminders that could not be sent.",
    "exports_sent": "Task exports delivered.",
}


class JobMetrics:
    """Counters kept in a private registry so tests can reset them."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._build()

    def _build(self) -> None:
        self.registry = CollectorRegistry(auto_describe=True)
        self._counters = {
            name: Counter(f"taskflow_{name}", description, registry=self.registry)
            for name, description in _COUNTERS.items()
        }

    def increment(self, counter: str, amount: int = 1) -> None:
        if counter not in self._counters:
            raise KeyError(f"Unknown job metric '{counter}'")
        with self._lock:
            self._counters[counter].inc(amount)

    def reset(self) -> None:
        with self._lock:
            self._build()

    def snapshot(self) -> dict[str, int]:
        with self._lock:
            return {
                name: int(self.registry.get_sample_value(f"taskflow_{name}_total") or 0)
                for name in self._counters
            }

    def render(self) -> tuple[bytes, str]:
        """Return the exposition payload and its content type."""
        with self._lock:
            return generate_latest(self.registry), CONTENT_TYPE_LATEST


job_metrics = JobMetrics()


__all__ = ["JobMetrics", "job_metrics"]
