"""Operator endpoints: Drive scans and manual lease recovery."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query, status
from sqlalchemy.orm import Session

from app.backend.src.core.config import get_settings
from app.backend.src.core.security import require_admin_user
from app.backend.src.core.storage import StagingArea
from app.backend.src.db import get_session_dependency
from app.backend.src.db.session import SessionLocal
from app.backend.src.models import DriveScan
from app.backend.src.schemas.invoice import UnlockResult
from app.backend.src.schemas.scan import ScanRead, ScanRequest
from app.backend.src.services import drive_scanner
from app.backend.src.services.invoice_queue import STALE_LOCK_MINUTES, unlock_stuck_invoices
from app.backend.src.services.providers import get_staging

LOGGER = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_user)],
)


def get_scan_session_factory():
    """Session factory handed to background scans."""

    return SessionLocal


def _run_scan(session_factory, staging: StagingArea, scan_id: int, request: ScanRequest) -> None:
    try:
        drive_scanner.scan_drive_for_invoices(
            session_factory,
            staging,
            scan_id,
            shop_id=request.shop_id,
            base_folder_id=request.base_folder_id,
        )
    except Exception as exc:  # recorded on the scan row
        LOGGER.error("background_scan_failed", scan_id=scan_id, error=str(exc))


@router.post("/scans", response_model=ScanRead, status_code=status.HTTP_202_ACCEPTED)
def start_scan(
    background_tasks: BackgroundTasks,
    request: ScanRequest | None = None,
    session: Session = Depends(get_session_dependency),
    staging: StagingArea = Depends(get_staging),
    session_factory=Depends(get_scan_session_factory),
) -> DriveScan:
    """Create a scan record and run the scan after the response is sent."""

    request = request or ScanRequest()
    request.base_folder_id = request.base_folder_id or get_settings().google_drive_base_folder_id
    scan = drive_scanner.create_scan(
        session, shop_id=request.shop_id, base_folder_id=request.base_folder_id
    )
    background_tasks.add_task(_run_scan, session_factory, staging, scan.id, request)
    LOGGER.info("drive_scan_started", scan_id=scan.id, shop_id=request.shop_id)
    return scan


@router.get("/scans", response_model=list[ScanRead])
def list_scans(
    limit: int = Query(default=50, ge=1, le=200),
    session: Session = Depends(get_session_dependency),
) -> list[DriveScan]:
    return drive_scanner.list_scans(session, limit=limit)


@router.get("/scans/{scan_id}", response_model=ScanRead)
def get_scan(scan_id: int, session: Session = Depends(get_session_dependency)) -> DriveScan:
    scan = session.get(DriveScan, scan_id)
    if scan is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Scan not found")
    return scan


@router.post("/unlock-stuck-invoices", response_model=UnlockResult)
def unlock_stuck(
    timeout_minutes: float = Body(default=STALE_LOCK_MINUTES, embed=True, gt=0),
    session: Session = Depends(get_session_dependency),
) -> UnlockResult:
    """Requeue invoices whose lease is older than ``timeout_minutes``."""

    unlocked = unlock_stuck_invoices(session, timeout_minutes=timeout_minutes, manual=True)
    return UnlockResult(unlocked=len(unlocked), invoice_ids=unlocked)
