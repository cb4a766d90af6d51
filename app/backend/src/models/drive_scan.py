"""Drive scan bookkeeping model."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .base import Base, as_utc, utc_now

SCAN_PENDING = "pending"
SCAN_RUNNING = "running"
SCAN_COMPLETED = "completed"
SCAN_FAILED = "failed"


def empty_scan_stats() -> dict[str, int]:
    return {
        "totalFound": 0,
        "newInvoices": 0,
        "existingInvoices": 0,
        "skipped": 0,
        "errors": 0,
    }


class DriveScan(Base):
    """One batch discovery run over the staging folders."""

    __tablename__ = "drive_scans"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=SCAN_PENDING)
    shop_id: Mapped[str | None] = mapped_column(String(128), index=True)
    base_folder_id: Mapped[str | None] = mapped_column(String(255))
    scanned_files: Mapped[list[Any]] = mapped_column(JSON, nullable=False, default=list)
    stats: Mapped[dict[str, Any]] = mapped_column(
        JSON, nullable=False, default=empty_scan_stats
    )
    error: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    completed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def duration_seconds(self) -> float | None:
        started = as_utc(self.started_at)
        completed = as_utc(self.completed_at)
        if started is None or completed is None:
            return None
        return (completed - started).total_seconds()


__all__ = [
    "DriveScan",
    "SCAN_COMPLETED",
    "SCAN_FAILED",
    "SCAN_PENDING",
    "SCAN_RUNNING",
    "empty_scan_stats",
]
