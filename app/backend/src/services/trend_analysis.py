"""Historical price trend comparison for a shop and supplier."""

from __future__ import annotations

import math

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.models.invoice import STATUS_PROCESSED, Invoice
from app.backend.src.schemas.invoice import TrendAnalysis

LOGGER = structlog.get_logger(__name__)

ANOMALY_THRESHOLD = 0.2


def analyze_trends(
    session: Session,
    invoice: Invoice,
    *,
    history_limit: int = 10,
) -> TrendAnalysis:
    """Compare ``invoice`` against recent processed invoices from the same supplier.

    Never raises: internal failures produce a fallback carrying an anomaly note.
    """

    try:
        history = session.scalars(
            select(Invoice)
            .where(
                Invoice.shop_id == invoice.shop_id,
                Invoice.supplier_id == invoice.supplier_id,
                Invoice.status == STATUS_PROCESSED,
                Invoice.id != invoice.id,
            )
            .order_by(Invoice.invoice_date.desc(), Invoice.id.desc())
            .limit(history_limit)
        ).all()

        if not history:
            return TrendAnalysis(anomalies=["No historical data available for comparison"])

        historical_totals = [
            total for total in (previous.total or 0 for previous in history) if total > 0
        ]
        if not historical_totals:
            return TrendAnalysis(anomalies=["Historical invoices missing total amounts"])

        current_total = invoice.total or 0
        mean = sum(historical_totals) / len(historical_totals)
        price_change = current_total - mean
        price_change_percent = price_change / mean * 100 if mean > 0 else 0.0
        variance = sum((total - mean) ** 2 for total in historical_totals) / len(historical_totals)
        volatility = math.sqrt(variance)

        anomalies: list[str] = []
        if abs(price_change) > mean * ANOMALY_THRESHOLD:
            direction = "increased" if price_change > 0 else "decreased"
            anomalies.append(
                f"Price {direction} by {abs(price_change_percent):.1f}% compared to average"
            )
        if not invoice.line_items:
            anomalies.append("Invoice has no line items")

        return TrendAnalysis(
            price_change=price_change,
            price_change_percent=price_change_percent,
            volatility=volatility,
            anomalies=anomalies or None,
        )
    except Exception as exc:
        LOGGER.error("trend_analysis_failed", invoice_id=invoice.id, error=str(exc))
        session.rollback()
        return TrendAnalysis(anomalies=["Error analyzing trends"])


__all__ = ["ANOMALY_THRESHOLD", "analyze_trends"]
