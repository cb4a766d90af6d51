"""Invoice model doubling as the processing job record."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, as_utc, utc_now

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .supplier import Supplier


STATUS_QUEUED = "queued"
STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"

INVOICE_STATUSES = (STATUS_QUEUED, STATUS_PROCESSING, STATUS_PROCESSED, STATUS_FAILED)


class Invoice(Base):
    """An invoice document moving through the processing pipeline."""

    __tablename__ = "invoices"
    __table_args__ = (
        Index("ix_invoices_claim", "status", "processing_attempts", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    shop_id: Mapped[str] = mapped_column(String(128), nullable=False, index=True)
    supplier_id: Mapped[int | None] = mapped_column(
        ForeignKey("suppliers.id"), nullable=True, index=True
    )
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=STATUS_QUEUED, index=True
    )
    drive_file_id: Mapped[str | None] = mapped_column(String(255), index=True)
    drive_url: Mapped[str | None] = mapped_column(String(1024))
    original_s3_key: Mapped[str | None] = mapped_column(String(1024))
    processed_s3_key: Mapped[str | None] = mapped_column(String(1024))
    hash_sha256: Mapped[str | None] = mapped_column(String(64), index=True)

    invoice_number: Mapped[str | None] = mapped_column(String(128))
    invoice_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    totals: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    line_items: Mapped[list[Any] | None] = mapped_column(JSON)
    context: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    trend_analysis: Mapped[dict[str, Any] | None] = mapped_column(JSON)
    recommendations: Mapped[list[Any] | None] = mapped_column(JSON)

    processing_stage: Mapped[str] = mapped_column(
        String(64), nullable=False, default=STATUS_QUEUED
    )
    processing_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processing_locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    processing_last_error: Mapped[str | None] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    supplier: Mapped["Supplier | None"] = relationship("Supplier", back_populates="invoices")

    @property
    def total(self) -> float | None:
        """Return the invoice grand total when one has been extracted."""

        if not self.totals:
            return None
        value = self.totals.get("total")
        return float(value) if value is not None else None

    @property
    def processing(self) -> dict[str, Any]:
        """Checkpoint sub-record in the shape the API exposes."""

        return {
            "stage": self.processing_stage,
            "attempts": self.processing_attempts,
            "lockedAt": as_utc(self.processing_locked_at),
            "lastError": self.processing_last_error,
        }


__all__ = [
    "INVOICE_STATUSES",
    "Invoice",
    "STATUS_FAILED",
    "STATUS_PROCESSED",
    "STATUS_PROCESSING",
    "STATUS_QUEUED",
]
