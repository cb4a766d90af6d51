"""Invoice pipeline construction for the background worker."""

from __future__ import annotations

from time import perf_counter

import structlog

from app.backend.src.agents.invoice_pipeline import InvoicePipeline
from app.backend.src.core.config import Settings, get_settings
from app.backend.src.db.session import SessionLocal
from app.backend.src.models import Invoice
from app.backend.src.services import providers

LOGGER = structlog.get_logger(__name__)


def build_pipeline(settings: Settings | None = None) -> InvoicePipeline:
    """Assemble the pipeline from configured collaborators."""

    settings = settings or get_settings()
    return InvoicePipeline(
        session_factory=SessionLocal,
        staging=providers.get_staging(),
        storage=providers.get_storage(),
        folders=providers.get_folder_resolver(),
        extractor=providers.get_extractor(),
        classifier=providers.get_classifier(),
        recommender=providers.get_recommender(),
        max_attempts=settings.max_retry_attempts,
        stale_after_minutes=settings.stale_lock_minutes,
        history_limit=settings.trend_history_limit,
    )


def process_next_invoice(pipeline: InvoicePipeline | None = None) -> Invoice | None:
    """Process a single queued invoice, if any, and log the outcome."""

    pipeline = pipeline or build_pipeline()
    start = perf_counter()
    try:
        invoice = pipeline.process_next()
    except Exception as exc:
        LOGGER.error("invoice_job_failure", error=str(exc), elapsed=perf_counter() - start)
        raise
    if invoice is not None:
        LOGGER.info("invoice_job_success", invoice_id=invoice.id, elapsed=perf_counter() - start)
    return invoice


__all__ = ["build_pipeline", "process_next_invoice"]
