"""Batch discovery of staged invoice documents."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.backend.src.core.storage import StagingArea
from app.backend.src.models import DriveScan, Invoice
from app.backend.src.models.base import utc_now
from app.backend.src.models.drive_scan import (
    SCAN_COMPLETED,
    SCAN_FAILED,
    SCAN_PENDING,
    SCAN_RUNNING,
    empty_scan_stats,
)

from .entity_resolution import resolve_or_create_shop
from .google_drive import INVOICES_FOLDER_NAME
from .invoice_queue import drive_url_for, enqueue_invoice

LOGGER = structlog.get_logger(__name__)

INVOICE_MIME_TYPES = frozenset(
    {
        "application/pdf",
        "image/png",
        "image/jpeg",
        "image/jpg",
        "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        "application/vnd.ms-excel",
    }
)


class ScanNotFoundError(LookupError):
    pass


def create_scan(
    session: Session, *, shop_id: str | None = None, base_folder_id: str | None = None
) -> DriveScan:
    scan = DriveScan(
        status=SCAN_PENDING,
        shop_id=shop_id,
        base_folder_id=base_folder_id,
        scanned_files=[],
        stats=empty_scan_stats(),
    )
    session.add(scan)
    session.commit()
    return scan


def list_scans(session: Session, *, limit: int = 50) -> list[DriveScan]:
    return list(
        session.scalars(
            select(DriveScan).order_by(DriveScan.created_at.desc(), DriveScan.id.desc()).limit(limit)
        )
    )


def _scan_shop(
    session: Session,
    staging: StagingArea,
    shop_folder: dict[str, str],
    scanned_files: list[dict[str, Any]],
    stats: dict[str, int],
) -> None:
    shop = resolve_or_create_shop(session, shop_folder["name"])
    session.commit()
    folder_path = f"{INVOICES_FOLDER_NAME}/{shop.shop_id}/unprocessed"
    unprocessed_id = staging.find_or_create_folder(shop_folder["id"], "unprocessed")

    for file in staging.list_files(unprocessed_id):
        stats["totalFound"] += 1
        mime_type = file.get("mimeType") or "unknown"
        record: dict[str, Any] = {
            "fileId": file["id"],
            "fileName": file.get("name") or "unknown",
            "shopId": shop.shop_id,
            "folderPath": folder_path,
            "mimeType": mime_type,
        }

        if mime_type not in INVOICE_MIME_TYPES:
            record.update(status="skipped", error="Unsupported file type")
            stats["skipped"] += 1
            scanned_files.append(record)
            continue

        existing_id = session.scalars(
            select(Invoice.id).where(Invoice.drive_file_id == file["id"]).limit(1)
        ).first()
        if existing_id is not None:
            record.update(status="existing", invoiceId=existing_id)
            stats["existingInvoices"] += 1
            scanned_files.append(record)
            continue

        try:
            invoice = enqueue_invoice(
                session,
                shop_id=shop.shop_id,
                drive_file_id=file["id"],
                drive_url=drive_url_for(file["id"]),
            )
            session.commit()
        except Exception as exc:
            session.rollback()
            LOGGER.error("scan_enqueue_failed", file_id=file["id"], error=str(exc))
            record.update(status="error", error=str(exc) or "Failed to create invoice")
            stats["errors"] += 1
        else:
            record.update(status="new", invoiceId=invoice.id)
            stats["newInvoices"] += 1
        scanned_files.append(record)


def scan_drive_for_invoices(
    session_factory: Callable[[], Session],
    staging: StagingArea,
    scan_id: int,
    *,
    shop_id: str | None = None,
    base_folder_id: str | None = None,
) -> DriveScan:
    """Walk ``<base>/Invoices/<shop>/unprocessed`` and enqueue unseen documents.

    A failing shop folder is counted and skipped; a failure outside the
    per-shop loop marks the scan failed and is re-raised.
    """

    with session_factory() as session:
        scan = session.get(DriveScan, scan_id)
        if scan is None:
            raise ScanNotFoundError(f"Scan {scan_id} not found")

        log = LOGGER.bind(scan_id=scan_id, shop_id=shop_id)
        scan.status = SCAN_RUNNING
        scan.started_at = utc_now()
        session.commit()

        scanned_files: list[dict[str, Any]] = []
        stats = empty_scan_stats()
        try:
            base = base_folder_id or scan.base_folder_id
            if not base:
                raise ValueError("GOOGLE_DRIVE_BASE_FOLDER_ID not configured")

            invoices_folder = staging.find_or_create_folder(base, INVOICES_FOLDER_NAME)
            if shop_id:
                found = staging.find_folder(invoices_folder, shop_id)
                shop_folders = [found] if found else []
            else:
                shop_folders = staging.list_folders(invoices_folder)

            for shop_folder in shop_folders:
                try:
                    _scan_shop(session, staging, shop_folder, scanned_files, stats)
                except Exception as exc:
                    session.rollback()
                    log.error("scan_shop_failed", folder=shop_folder.get("name"), error=str(exc))
                    stats["errors"] += 1
        except Exception as exc:
            session.rollback()
            scan = session.get(DriveScan, scan_id, populate_existing=True)
            scan.status = SCAN_FAILED
            scan.error = str(exc)
            scan.scanned_files = scanned_files
            scan.stats = stats
            scan.completed_at = utc_now()
            session.commit()
            log.error("drive_scan_failed", error=str(exc))
            raise

        scan.scanned_files = scanned_files
        scan.stats = stats
        scan.status = SCAN_COMPLETED
        scan.completed_at = utc_now()
        session.commit()
        log.info("drive_scan_completed", **stats)
        return scan


__all__ = [
    "INVOICE_MIME_TYPES",
    "ScanNotFoundError",
    "create_scan",
    "list_scans",
    "scan_drive_for_invoices",
]
