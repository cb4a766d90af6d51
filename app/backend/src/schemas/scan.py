"""Drive scan API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict


class ScanRequest(BaseModel):
    shop_id: str | None = None
    base_folder_id: str | None = None


class ScanRead(BaseModel):
    """Schema for drive scan records exposed via the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    status: str
    shop_id: str | None
    base_folder_id: str | None
    scanned_files: list[dict[str, Any]]
    stats: dict[str, Any]
    error: str | None
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    duration_seconds: float | None = None
