"""Invoice listing and lifecycle endpoints."""

from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.backend.src.core.storage import StagingArea
from app.backend.src.db import get_session_dependency
from app.backend.src.models import Invoice
from app.backend.src.schemas.invoice import InvoiceDetail, InvoiceRead, Recommendation
from app.backend.src.services import invoice_queue
from app.backend.src.services.google_drive import FolderResolver
from app.backend.src.services.providers import get_folder_resolver, get_staging
from app.backend.src.services.recommendations import calculate_recommendation_summary

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _to_detail(invoice: Invoice) -> InvoiceDetail:
    detail = InvoiceDetail.model_validate(invoice)
    if invoice.recommendations:
        recommendations = [Recommendation.model_validate(item) for item in invoice.recommendations]
        detail.summary = calculate_recommendation_summary(recommendations, invoice.total or 0)
    return detail


@router.get("", response_model=list[InvoiceRead])
def list_invoices(
    shop_id: str | None = Query(default=None),
    status: Literal["queued", "processing", "processed", "failed"] | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    session: Session = Depends(get_session_dependency),
) -> list[Invoice]:
    """Return invoices newest first, optionally filtered by shop and status."""

    return invoice_queue.list_invoices(
        session, shop_id=shop_id, status_filter=status, limit=limit
    )


@router.get("/{invoice_id}", response_model=InvoiceDetail)
def get_invoice(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
) -> InvoiceDetail:
    return _to_detail(invoice_queue.get_invoice_or_404(session, invoice_id))


@router.post("/{invoice_id}/cancel", response_model=InvoiceRead)
def cancel_invoice(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    staging: StagingArea = Depends(get_staging),
    folders: FolderResolver = Depends(get_folder_resolver),
) -> Invoice:
    """Return a processing invoice to the queue."""

    return invoice_queue.cancel_invoice(session, invoice_id, staging=staging, folders=folders)


@router.post("/{invoice_id}/reprocess", response_model=InvoiceRead)
def reprocess_invoice(
    invoice_id: int,
    session: Session = Depends(get_session_dependency),
    staging: StagingArea = Depends(get_staging),
    folders: FolderResolver = Depends(get_folder_resolver),
) -> Invoice:
    """Requeue a processed or failed invoice with its attempts reset."""

    return invoice_queue.reprocess_invoice(session, invoice_id, staging=staging, folders=folders)
