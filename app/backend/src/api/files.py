"""Presigned download links for invoice artifacts."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from app.backend.src.core.security import (
    AuthenticatedUser,
    ensure_shop_access,
    require_shop_owner_or_admin,
)
from app.backend.src.core.storage import ObjectStorage
from app.backend.src.db import get_session_dependency
from app.backend.src.schemas.invoice import PresignedUrlRead
from app.backend.src.services.invoice_queue import get_invoice_or_404
from app.backend.src.services.providers import get_storage

router = APIRouter(prefix="/files", tags=["files"])


def _presign(storage: ObjectStorage, key: str | None, expires_in: int, label: str) -> PresignedUrlRead:
    if not key:
        raise HTTPException(status_code=404, detail=f"{label} file not available")
    return PresignedUrlRead(url=storage.presigned_url(key, expires_in=expires_in), expires_in=expires_in)


@router.get("/{invoice_id}/original-url", response_model=PresignedUrlRead)
def original_url(
    invoice_id: int,
    expires_in: int = Query(default=3600, ge=60, le=7 * 24 * 3600),
    session: Session = Depends(get_session_dependency),
    storage: ObjectStorage = Depends(get_storage),
    user: AuthenticatedUser = Depends(require_shop_owner_or_admin),
) -> PresignedUrlRead:
    invoice = get_invoice_or_404(session, invoice_id)
    ensure_shop_access(user, invoice.shop_id)
    return _presign(storage, invoice.original_s3_key, expires_in, "Original")


@router.get("/{invoice_id}/processed-url", response_model=PresignedUrlRead)
def processed_url(
    invoice_id: int,
    expires_in: int = Query(default=3600, ge=60, le=7 * 24 * 3600),
    session: Session = Depends(get_session_dependency),
    storage: ObjectStorage = Depends(get_storage),
    user: AuthenticatedUser = Depends(require_shop_owner_or_admin),
) -> PresignedUrlRead:
    invoice = get_invoice_or_404(session, invoice_id)
    ensure_shop_access(user, invoice.shop_id)
    return _presign(storage, invoice.processed_s3_key, expires_in, "Processed")
