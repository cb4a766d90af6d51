"""Prometheus metric definitions for invoice processing."""

from __future__ import annotations

from prometheus_client import Counter, Histogram

invoice_jobs_total = Counter(
    "invoice_jobs_total",
    "Total invoice processing jobs by outcome.",
    labelnames=["status"],
)

invoice_job_duration_seconds = Histogram(
    "invoice_job_duration_seconds",
    "Duration of a full invoice pipeline run in seconds.",
)

invoice_stage_seconds = Histogram(
    "invoice_stage_seconds",
    "Time spent in a single pipeline stage.",
    labelnames=["stage"],
)

invoice_unlocked_total = Counter(
    "invoice_unlocked_total",
    "Invoices returned to the queue after their lease went stale.",
    labelnames=["trigger"],
)

__all__ = [
    "invoice_job_duration_seconds",
    "invoice_jobs_total",
    "invoice_stage_seconds",
    "invoice_unlocked_total",
]
