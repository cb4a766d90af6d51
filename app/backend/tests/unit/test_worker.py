from __future__ import annotations

from types import SimpleNamespace

import pytest

from tasks.worker import InvoiceWorker


class ScriptedPipeline:
    """Replays a fixed sequence of outcomes: an invoice, ``None`` or an exception."""

    def __init__(self, outcomes) -> None:
        self.outcomes = list(outcomes)
        self.calls = 0

    def process_next(self):
        self.calls += 1
        outcome = self.outcomes.pop(0) if self.outcomes else None
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


def test_run_once_reports_outcome() -> None:
    pipeline = ScriptedPipeline([SimpleNamespace(id=1), None, RuntimeError("boom")])
    worker = InvoiceWorker(pipeline, sleep=lambda seconds: None)

    assert worker.run_once() == "processed"
    assert worker.run_once() == "idle"
    assert worker.run_once() == "error"


def test_loop_sleeps_only_after_idle_or_error() -> None:
    slept: list[float] = []
    pipeline = ScriptedPipeline(
        [SimpleNamespace(id=1), SimpleNamespace(id=2), None, RuntimeError("boom")]
    )
    worker = InvoiceWorker(pipeline, poll_interval_seconds=5.0, sleep=slept.append)

    counts = worker.run_loop(max_iterations=4)

    assert counts == {"processed": 2, "idle": 1, "error": 1}
    assert pipeline.calls == 4
    assert sum(slept) == pytest.approx(10.0)
    assert max(slept) <= 0.1


def test_stop_request_interrupts_sleep() -> None:
    pipeline = ScriptedPipeline([])
    slept: list[float] = []

    def sleep(seconds: float) -> None:
        slept.append(seconds)
        if len(slept) == 3:
            worker.request_stop("test")

    worker = InvoiceWorker(pipeline, poll_interval_seconds=5.0, sleep=sleep)

    counts = worker.run_loop()

    assert worker.stop_requested
    assert counts == {"processed": 0, "idle": 1, "error": 0}
    assert len(slept) == 3


def test_stopped_worker_does_not_poll() -> None:
    pipeline = ScriptedPipeline([SimpleNamespace(id=1)])
    worker = InvoiceWorker(pipeline, sleep=lambda seconds: None)
    worker.request_stop()

    assert worker.run_loop() == {"processed": 0, "idle": 0, "error": 0}
    assert pipeline.calls == 0
