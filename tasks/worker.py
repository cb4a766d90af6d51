"""Polling worker that drains the invoice queue one job at a time."""

from __future__ import annotations

import signal
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Literal

import structlog

from app.backend.src.agents.invoice_pipeline import InvoicePipeline
from app.backend.src.core.config import get_settings
from app.backend.src.core.logging import configure_logging

from .invoice_tasks import build_pipeline, process_next_invoice

LOGGER = structlog.get_logger(__name__)

TickOutcome = Literal["processed", "idle", "error"]


class InvoiceWorker:
    """Drive the pipeline: continue immediately after work, back off otherwise."""

    def __init__(
        self,
        pipeline: InvoicePipeline,
        *,
        poll_interval_seconds: float = 5.0,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.pipeline = pipeline
        self.poll_interval_seconds = poll_interval_seconds
        self._sleep = sleep
        self._stop_requested = False

    def request_stop(self, reason: str = "requested") -> None:
        if not self._stop_requested:
            LOGGER.info("worker_stop_requested", reason=reason)
        self._stop_requested = True

    @property
    def stop_requested(self) -> bool:
        return self._stop_requested

    def run_once(self) -> TickOutcome:
        """Attempt one claim plus full pipeline run."""

        try:
            invoice = process_next_invoice(self.pipeline)
        except Exception as exc:
            LOGGER.warning("worker_tick_failed", error=str(exc), error_type=type(exc).__name__)
            return "error"
        return "idle" if invoice is None else "processed"

    def run_loop(self, *, max_iterations: int | None = None) -> dict[str, int]:
        """Run until a stop is requested or ``max_iterations`` ticks have run."""

        counts = {"processed": 0, "idle": 0, "error": 0}
        iterations = 0
        LOGGER.info("worker_started", poll_interval=self.poll_interval_seconds)
        with self._signal_handlers():
            while not self._stop_requested:
                if max_iterations is not None and iterations >= max_iterations:
                    break
                outcome = self.run_once()
                counts[outcome] += 1
                iterations += 1
                if outcome != "processed":
                    self._sleep_with_stop(self.poll_interval_seconds)
        LOGGER.info("worker_stopped", **counts)
        return counts

    def _sleep_with_stop(self, seconds: float) -> None:
        remaining = seconds
        while remaining > 0 and not self._stop_requested:
            step = min(0.1, remaining)
            self._sleep(step)
            remaining -= step

    @contextmanager
    def _signal_handlers(self) -> Iterator[None]:
        def _handler(signum: int, _: object | None) -> None:
            self.request_stop(reason=signal.Signals(signum).name)

        originals: dict[int, object] = {}
        try:
            for signum in (signal.SIGINT, signal.SIGTERM):
                originals[signum] = signal.getsignal(signum)
                signal.signal(signum, _handler)
        except ValueError:
            # Handlers can only be installed from the main thread.
            LOGGER.debug("worker_signal_handlers_skipped")
        try:
            yield
        finally:
            for signum, original in originals.items():
                signal.signal(signum, original)


def main() -> None:
    configure_logging()
    settings = get_settings()
    worker = InvoiceWorker(
        build_pipeline(settings),
        poll_interval_seconds=settings.worker_poll_interval_seconds,
    )
    worker.run_loop()


if __name__ == "__main__":
    main()


__all__ = ["InvoiceWorker", "main"]
