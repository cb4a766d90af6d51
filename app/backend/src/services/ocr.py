"""Invoice extraction collaborator."""

from __future__ import annotations

from typing import Protocol

import structlog

from app.backend.src.models.base import utc_now
from app.backend.src.schemas.invoice import ExtractedInvoice, InvoiceTotals, LineItem

LOGGER = structlog.get_logger(__name__)


class InvoiceExtractor(Protocol):
    def extract(self, content: bytes, mime_type: str) -> ExtractedInvoice:
        """Return structured invoice data for a raw document."""


class PlaceholderExtractor:
    """Extractor used until an OCR backend is wired in.

    Returns a fixed, well-formed sample so every downstream stage can run.
    """

    def extract(self, content: bytes, mime_type: str) -> ExtractedInvoice:
        LOGGER.warning(
            "ocr_extraction_not_implemented",
            mime_type=mime_type,
            size=len(content),
        )
        return ExtractedInvoice(
            supplier_name="Unknown Supplier",
            invoice_number="INV-001",
            invoice_date=utc_now(),
            line_items=[
                LineItem(
                    description="Brake Pad Set",
                    sku="BP-12345",
                    quantity=2,
                    unit_price=45.99,
                    total=91.98,
                    confidence=0.85,
                )
            ],
            totals=InvoiceTotals(subtotal=91.98, tax=7.36, shipping=10.0, total=109.34),
        )


__all__ = ["InvoiceExtractor", "PlaceholderExtractor"]
