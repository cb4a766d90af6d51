"""Invoice job queue: enqueue, atomic claim and stale-lease recovery.

The relational store is the only shared state. A claim is a conditional
``UPDATE`` that only matches a still-queued row, so two workers racing for
the same invoice can never both win it.
"""

from __future__ import annotations

from datetime import datetime, timedelta

import structlog
from fastapi import HTTPException, status
from sqlalchemy import select, update
from sqlalchemy.orm import Session

from app.backend.src.core.storage import StagingArea
from app.backend.src.models.base import as_utc, utc_now
from app.backend.src.models.invoice import (
    STATUS_FAILED,
    STATUS_PROCESSED,
    STATUS_PROCESSING,
    STATUS_QUEUED,
    Invoice,
)

from .google_drive import FolderResolver
from .metrics import invoice_unlocked_total

LOGGER = structlog.get_logger(__name__)

MAX_RETRY_ATTEMPTS = 3
STALE_LOCK_MINUTES = 30
STAGE_ACQUIRED = "acquired"
CLAIM_CANDIDATES = 5


def drive_url_for(file_id: str) -> str:
    return f"https://drive.google.com/file/d/{file_id}"


def enqueue_invoice(
    session: Session,
    *,
    shop_id: str,
    drive_file_id: str | None,
    drive_url: str | None = None,
) -> Invoice:
    """Create a queued invoice pointing at a staged document."""

    invoice = Invoice(
        shop_id=shop_id,
        status=STATUS_QUEUED,
        drive_file_id=drive_file_id,
        drive_url=drive_url or (drive_url_for(drive_file_id) if drive_file_id else None),
        processing_stage=STATUS_QUEUED,
        processing_attempts=0,
    )
    session.add(invoice)
    session.flush()
    LOGGER.info("invoice_enqueued", invoice_id=invoice.id, shop_id=shop_id, drive_file_id=drive_file_id)
    return invoice


def unlock_stuck_invoices(
    session: Session,
    *,
    timeout_minutes: float = STALE_LOCK_MINUTES,
    manual: bool = False,
    now: datetime | None = None,
) -> list[int]:
    """Return invoices whose lease is older than ``timeout_minutes`` to the queue.

    Each reset records why it happened in ``processing_last_error``. Returns
    the ids that were unlocked.
    """

    now = now or utc_now()
    threshold = now - timedelta(minutes=timeout_minutes)
    stuck = session.scalars(
        select(Invoice)
        .where(
            Invoice.status == STATUS_PROCESSING,
            Invoice.processing_locked_at.is_not(None),
            Invoice.processing_locked_at < threshold,
        )
        .order_by(Invoice.id)
    ).all()

    unlocked: list[int] = []
    prefix = "Manually" if manual else "Automatically"
    for invoice in stuck:
        locked_at = as_utc(invoice.processing_locked_at)
        minutes = round((now - locked_at).total_seconds() / 60) if locked_at else 0
        note = f"{prefix} unlocked after being stuck for {minutes} minutes (stage: {invoice.processing_stage})"
        result = session.execute(
            update(Invoice)
            .where(
                Invoice.id == invoice.id,
                Invoice.status == STATUS_PROCESSING,
                Invoice.processing_locked_at < threshold,
            )
            .values(
                status=STATUS_QUEUED,
                processing_stage=STATUS_QUEUED,
                processing_locked_at=None,
                processing_last_error=note,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            unlocked.append(invoice.id)
            LOGGER.warning(
                "invoice_unlocked",
                invoice_id=invoice.id,
                stage=invoice.processing_stage,
                minutes=minutes,
                manual=manual,
            )

    session.commit()
    if unlocked:
        invoice_unlocked_total.labels(trigger="manual" if manual else "sweep").inc(len(unlocked))
        for invoice_id in unlocked:
            session.get(Invoice, invoice_id, populate_existing=True)
    return unlocked


def acquire_next_invoice(
    session: Session,
    *,
    max_attempts: int = MAX_RETRY_ATTEMPTS,
    stale_after_minutes: float = STALE_LOCK_MINUTES,
) -> Invoice | None:
    """Claim the oldest eligible queued invoice, or return ``None``.

    The stale-lease sweep runs first on every call.
    """

    unlock_stuck_invoices(session, timeout_minutes=stale_after_minutes)

    eligible = (
        Invoice.status == STATUS_QUEUED,
        Invoice.processing_attempts < max_attempts,
    )
    candidate_ids = session.scalars(
        select(Invoice.id)
        .where(*eligible)
        .order_by(Invoice.created_at.asc(), Invoice.id.asc())
        .limit(CLAIM_CANDIDATES)
    ).all()

    for invoice_id in candidate_ids:
        now = utc_now()
        result = session.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, *eligible)
            .values(
                status=STATUS_PROCESSING,
                processing_stage=STAGE_ACQUIRED,
                processing_locked_at=now,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        session.commit()
        if result.rowcount == 1:
            invoice = session.get(Invoice, invoice_id, populate_existing=True)
            LOGGER.info("invoice_acquired", invoice_id=invoice_id, attempts=invoice.processing_attempts)
            return invoice
        LOGGER.debug("invoice_claim_lost", invoice_id=invoice_id)

    return None


def relocate_source_file(
    invoice: Invoice,
    kind: str,
    *,
    staging: StagingArea | None,
    folders: FolderResolver | None,
) -> bool:
    """Move the invoice's staged document into the shop's ``kind`` folder.

    Best effort: failures are logged and reported through the return value.
    """

    if not invoice.drive_file_id or staging is None or folders is None:
        return False
    try:
        folder_id = folders.resolve(invoice.shop_id, kind)
        staging.move(invoice.drive_file_id, folder_id)
    except Exception as exc:
        LOGGER.error(
            "drive_move_failed",
            invoice_id=invoice.id,
            drive_file_id=invoice.drive_file_id,
            kind=kind,
            error=str(exc),
        )
        return False
    return True


def list_invoices(
    session: Session,
    *,
    shop_id: str | None = None,
    status_filter: str | None = None,
    limit: int = 100,
) -> list[Invoice]:
    """Return invoices newest first."""

    query = select(Invoice)
    if shop_id:
        query = query.where(Invoice.shop_id == shop_id)
    if status_filter:
        query = query.where(Invoice.status == status_filter)
    return list(
        session.scalars(query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).limit(limit))
    )


def get_invoice_or_404(session: Session, invoice_id: int) -> Invoice:
    invoice = session.get(Invoice, invoice_id)
    if invoice is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


def cancel_invoice(
    session: Session,
    invoice_id: int,
    *,
    staging: StagingArea | None = None,
    folders: FolderResolver | None = None,
) -> Invoice:
    """Return a processing invoice to the queue, abandoning the stage in flight."""

    invoice = get_invoice_or_404(session, invoice_id)
    if invoice.status != STATUS_PROCESSING:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only processing invoices can be cancelled (status: {invoice.status})",
        )

    invoice.status = STATUS_QUEUED
    invoice.processing_stage = STATUS_QUEUED
    invoice.processing_locked_at = None
    session.commit()
    LOGGER.info("invoice_cancelled", invoice_id=invoice.id)

    relocate_source_file(invoice, "unprocessed", staging=staging, folders=folders)
    return invoice


def reprocess_invoice(
    session: Session,
    invoice_id: int,
    *,
    staging: StagingArea | None = None,
    folders: FolderResolver | None = None,
) -> Invoice:
    """Requeue a processed or failed invoice with a fresh attempt budget."""

    invoice = get_invoice_or_404(session, invoice_id)
    if invoice.status not in {STATUS_PROCESSED, STATUS_FAILED}:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Only processed or failed invoices can be reprocessed (status: {invoice.status})",
        )

    previous_status = invoice.status
    invoice.status = STATUS_QUEUED
    invoice.processing_stage = STATUS_QUEUED
    invoice.processing_attempts = 0
    invoice.processing_locked_at = None
    invoice.processing_last_error = None
    session.commit()
    LOGGER.info("invoice_requeued", invoice_id=invoice.id, previous_status=previous_status)

    relocate_source_file(invoice, "unprocessed", staging=staging, folders=folders)
    return invoice


__all__ = [
    "MAX_RETRY_ATTEMPTS",
    "STAGE_ACQUIRED",
    "STALE_LOCK_MINUTES",
    "acquire_next_invoice",
    "cancel_invoice",
    "drive_url_for",
    "enqueue_invoice",
    "get_invoice_or_404",
    "list_invoices",
    "relocate_source_file",
    "reprocess_invoice",
    "unlock_stuck_invoices",
]
