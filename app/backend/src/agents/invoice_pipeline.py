"""Nine-stage invoice processing pipeline with checkpointing and bounded retry."""

from __future__ import annotations

import hashlib
import json
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.backend.src.core.storage import ObjectStorage, StagedFile, StagingArea
from app.backend.src.models.base import as_utc, utc_now
from app.backend.src.models.invoice import (
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    Invoice,
)
from app.backend.src.schemas.invoice import ExtractedInvoice, PurchaseContext, Recommendation
from app.backend.src.services.classification import ContextClassifier, fallback_context
from app.backend.src.services.entity_resolution import (
    resolve_or_create_parts,
    resolve_or_create_shop,
    resolve_or_create_supplier,
)
from app.backend.src.services.google_drive import FolderResolver
from app.backend.src.services.invoice_queue import (
    MAX_RETRY_ATTEMPTS,
    STALE_LOCK_MINUTES,
    acquire_next_invoice,
    relocate_source_file,
)
from app.backend.src.services.metrics import (
    invoice_job_duration_seconds,
    invoice_jobs_total,
    invoice_stage_seconds,
)
from app.backend.src.services.ocr import InvoiceExtractor
from app.backend.src.services.recommendations import SavingsRecommender
from app.backend.src.services.s3 import build_original_key, build_processed_key, file_extension_for
from app.backend.src.services.trend_analysis import analyze_trends

LOGGER = structlog.get_logger(__name__)

STAGE_DOWNLOADING = "downloading"
STAGE_HASHING = "hashing"
STAGE_UPLOADING = "uploading"
STAGE_EXTRACTING = "extracting"
STAGE_RESOLVING_ENTITIES = "resolving_entities"
STAGE_CLASSIFYING_CONTEXT = "classifying_context"
STAGE_ANALYZING_TRENDS = "analyzing_trends"
STAGE_GENERATING_RECOMMENDATIONS = "generating_recommendations"
STAGE_PERSISTING = "persisting"
STAGE_COMPLETED = "completed"

STAGES: tuple[str, ...] = (
    STAGE_DOWNLOADING,
    STAGE_HASHING,
    STAGE_UPLOADING,
    STAGE_EXTRACTING,
    STAGE_RESOLVING_ENTITIES,
    STAGE_CLASSIFYING_CONTEXT,
    STAGE_ANALYZING_TRENDS,
    STAGE_GENERATING_RECOMMENDATIONS,
    STAGE_PERSISTING,
)


class InvoiceProcessingError(RuntimeError):
    """Base class for failures raised by the pipeline itself."""


class MissingSourceFileError(InvoiceProcessingError):
    def __init__(self, invoice_id: int) -> None:
        super().__init__(f"Invoice {invoice_id} is missing drive_file_id")
        self.invoice_id = invoice_id


class DuplicateInvoiceError(InvoiceProcessingError):
    """Raised when another invoice already holds the same content hash."""

    def __init__(self, duplicate_of: int) -> None:
        super().__init__(f"Duplicate invoice detected: {duplicate_of}")
        self.duplicate_of = duplicate_of


class LeaseLostError(InvoiceProcessingError):
    """Raised when the invoice was cancelled or reclaimed while a stage ran."""

    def __init__(self, invoice_id: int, status: str) -> None:
        super().__init__(f"Lease on invoice {invoice_id} lost (status: {status})")
        self.invoice_id = invoice_id
        self.status = status


class InvoicePipeline:
    """Claim one invoice and run it through every stage.

    Every stage commits its name to ``processing_stage`` before its side effect
    and commits again once its results are on the record. Any exception is
    handed to :meth:`_handle_failure`, which records the attempt and re-raises.
    """

    def __init__(
        self,
        *,
        session_factory: Callable[[], Session],
        staging: StagingArea,
        storage: ObjectStorage,
        folders: FolderResolver,
        extractor: InvoiceExtractor,
        classifier: ContextClassifier,
        recommender: SavingsRecommender,
        max_attempts: int = MAX_RETRY_ATTEMPTS,
        stale_after_minutes: float = STALE_LOCK_MINUTES,
        history_limit: int = 10,
    ) -> None:
        self.session_factory = session_factory
        self.staging = staging
        self.storage = storage
        self.folders = folders
        self.extractor = extractor
        self.classifier = classifier
        self.recommender = recommender
        self.max_attempts = max_attempts
        self.stale_after_minutes = stale_after_minutes
        self.history_limit = history_limit

    def process_next(self) -> Invoice | None:
        """Process the oldest eligible invoice; return it, or ``None`` when idle."""

        with self.session_factory() as session:
            invoice = acquire_next_invoice(
                session,
                max_attempts=self.max_attempts,
                stale_after_minutes=self.stale_after_minutes,
            )
            if invoice is None:
                return None

            lease = as_utc(invoice.processing_locked_at)
            log = LOGGER.bind(invoice_id=invoice.id, shop_id=invoice.shop_id)
            log.info("invoice_processing_started", attempt=invoice.processing_attempts + 1)
            started = time.perf_counter()
            try:
                self._run_stages(session, invoice, lease)
                self._finalize(session, invoice, lease, log)
            except LeaseLostError as exc:
                session.rollback()
                log.warning("invoice_lease_lost", status=exc.status)
                invoice_jobs_total.labels(status="abandoned").inc()
                raise
            except Exception as exc:
                self._handle_failure(session, invoice.id, exc, log)
                raise
            finally:
                invoice_job_duration_seconds.observe(time.perf_counter() - started)
            return invoice

    def _ensure_lease(self, session: Session, invoice: Invoice, lease: Any) -> None:
        session.refresh(invoice, attribute_names=["status", "processing_locked_at"])
        if invoice.status != STATUS_PROCESSING or as_utc(invoice.processing_locked_at) != lease:
            raise LeaseLostError(invoice.id, invoice.status)

    @contextmanager
    def _checkpoint(
        self, session: Session, invoice: Invoice, stage: str, lease: Any
    ) -> Iterator[None]:
        self._ensure_lease(session, invoice, lease)
        invoice.processing_stage = stage
        session.commit()
        structlog.contextvars.bind_contextvars(stage=stage)
        started = time.perf_counter()
        try:
            yield
        finally:
            structlog.contextvars.unbind_contextvars("stage")
        session.commit()
        invoice_stage_seconds.labels(stage=stage).observe(time.perf_counter() - started)

    def _run_stages(self, session: Session, invoice: Invoice, lease: Any) -> None:
        with self._checkpoint(session, invoice, STAGE_DOWNLOADING, lease):
            staged = self._download(invoice)

        with self._checkpoint(session, invoice, STAGE_HASHING, lease):
            invoice.hash_sha256 = self._check_duplicate(session, invoice, staged.content)

        with self._checkpoint(session, invoice, STAGE_UPLOADING, lease):
            extension = file_extension_for(staged.mime_type, staged.content)
            key = build_original_key(invoice.shop_id, invoice.id, extension)
            invoice.original_s3_key = self.storage.put(key, staged.content, staged.mime_type)

        with self._checkpoint(session, invoice, STAGE_EXTRACTING, lease):
            extracted = self.extractor.extract(staged.content, staged.mime_type)
            invoice.invoice_number = extracted.invoice_number
            invoice.invoice_date = extracted.invoice_date
            invoice.totals = extracted.totals.to_document()
            invoice.line_items = [item.to_document() for item in extracted.line_items]

        with self._checkpoint(session, invoice, STAGE_RESOLVING_ENTITIES, lease):
            resolve_or_create_shop(session, invoice.shop_id)
            supplier = resolve_or_create_supplier(session, extracted.supplier_name)
            invoice.supplier_id = supplier.id
            resolve_or_create_parts(session, extracted.line_items)

        with self._checkpoint(session, invoice, STAGE_CLASSIFYING_CONTEXT, lease):
            context = self._classify(invoice, extracted)
            invoice.context = context.to_document()

        with self._checkpoint(session, invoice, STAGE_ANALYZING_TRENDS, lease):
            trends = analyze_trends(session, invoice, history_limit=self.history_limit)
            invoice.trend_analysis = trends.to_document()

        with self._checkpoint(session, invoice, STAGE_GENERATING_RECOMMENDATIONS, lease):
            recommendations = self._recommend(invoice, extracted)
            invoice.recommendations = [rec.to_document() for rec in recommendations]

        with self._checkpoint(session, invoice, STAGE_PERSISTING, lease):
            artifact = {
                "extractedData": extracted.to_document(),
                "context": invoice.context,
                "trendAnalysis": invoice.trend_analysis,
                "recommendations": invoice.recommendations,
                "processedAt": utc_now().isoformat(),
            }
            invoice.processed_s3_key = self.storage.put(
                build_processed_key(invoice.shop_id, invoice.id),
                json.dumps(artifact, indent=2).encode("utf-8"),
                "application/json",
            )

    def _download(self, invoice: Invoice) -> StagedFile:
        if not invoice.drive_file_id:
            raise MissingSourceFileError(invoice.id)
        return self.staging.fetch(invoice.drive_file_id)

    def _check_duplicate(self, session: Session, invoice: Invoice, content: bytes) -> str:
        digest = hashlib.sha256(content).hexdigest()
        duplicate_id = session.scalars(
            select(Invoice.id)
            .where(Invoice.hash_sha256 == digest, Invoice.id != invoice.id)
            .order_by(Invoice.id)
            .limit(1)
        ).first()
        if duplicate_id is not None:
            raise DuplicateInvoiceError(duplicate_id)
        return digest

    def _classify(self, invoice: Invoice, extracted: ExtractedInvoice) -> PurchaseContext:
        try:
            return self.classifier.classify(
                extracted.supplier_name,
                extracted.line_items,
                extracted.invoice_date,
                extracted.totals,
            )
        except Exception as exc:
            LOGGER.error("classifier_raised", invoice_id=invoice.id, error=str(exc))
            return fallback_context()

    def _recommend(self, invoice: Invoice, extracted: ExtractedInvoice) -> list[Recommendation]:
        try:
            return list(
                self.recommender.recommend(
                    extracted.supplier_name, extracted.line_items, extracted.totals
                )
            )
        except Exception as exc:
            LOGGER.error("recommender_raised", invoice_id=invoice.id, error=str(exc))
            return []

    def _finalize(self, session: Session, invoice: Invoice, lease: Any, log: Any) -> None:
        self._ensure_lease(session, invoice, lease)
        # Compare against the lock value as stored; a cancel may land after the check.
        result = session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == STATUS_PROCESSING,
                Invoice.processing_locked_at == invoice.processing_locked_at,
            )
            .values(
                status=STATUS_PROCESSED,
                processing_stage=STAGE_COMPLETED,
                processing_locked_at=None,
                updated_at=utc_now(),
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            session.rollback()
            current = session.get(Invoice, invoice.id, populate_existing=True)
            raise LeaseLostError(invoice.id, current.status if current is not None else "deleted")
        session.commit()
        session.refresh(invoice)
        invoice_jobs_total.labels(status=STATUS_PROCESSED).inc()
        log.info("invoice_processed", total=invoice.total)

        relocate_source_file(invoice, "processed", staging=self.staging, folders=self.folders)

    def _handle_failure(
        self, session: Session, invoice_id: int, error: Exception, log: Any
    ) -> None:
        """Record a failed attempt, requeueing or parking the invoice."""

        session.rollback()
        invoice = session.get(Invoice, invoice_id, populate_existing=True)
        if invoice is None:
            log.error("invoice_vanished_during_processing", error=str(error))
            return

        invoice.processing_attempts += 1
        invoice.processing_last_error = str(error) or error.__class__.__name__
        terminal = invoice.processing_attempts >= self.max_attempts
        if terminal:
            invoice.status = STATUS_FAILED
            invoice.processing_stage = STATUS_FAILED
        else:
            invoice.status = STATUS_QUEUED
            invoice.processing_stage = STATUS_QUEUED
        invoice.processing_locked_at = None
        session.commit()

        log.error(
            "invoice_processing_failed",
            error=invoice.processing_last_error,
            attempts=invoice.processing_attempts,
            terminal=terminal,
        )
        invoice_jobs_total.labels(status=STATUS_FAILED if terminal else "retry").inc()

        if terminal:
            relocate_source_file(invoice, "failed", staging=self.staging, folders=self.folders)


__all__ = [
    "DuplicateInvoiceError",
    "InvoicePipeline",
    "InvoiceProcessingError",
    "LeaseLostError",
    "MissingSourceFileError",
    "STAGES",
]
