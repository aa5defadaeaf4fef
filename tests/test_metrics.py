from __future__ import annotations

import pytest

from taskflow.core.metrics import JobMetrics


def test_counters_accumulate_and_reset() -> None:
    metrics = JobMetrics()

    metrics.increment("jobs_enqueued")
    metrics.increment("archived_tasks", 3)
    metrics.increment("archived_tasks", 0)

    snapshot = metrics.snapshot()
    assert snapshot["jobs_enqueued"] == 1
    assert snapshot["archived_tasks"] == 3
    assert snapshot["exports_sent"] == 0

    metrics.reset()
    assert set(metrics.snapshot().values()) == {0}


def test_unknown_counter_is_rejected() -> None:
    with pytest.raises(KeyError):
        JobMetrics().increment("bogus")


def test_render_uses_prometheus_exposition_format() -> None:
    metrics = JobMetrics()
    metrics.increment("reminders_sent", 2)

    payload, content_type = metrics.render()

    assert content_type.startswith("text/plain")
    assert b"# TYPE taskflow_reminders_sent_total counter" in payload
    assert b"taskflow_reminders_sent_total 2.0" in payload
