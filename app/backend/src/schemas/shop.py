"""Shop API schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ShopCreate(BaseModel):
    shop_id: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=255)
    cohort: str | None = None


class ShopRead(BaseModel):
    """Schema for shop records exposed via the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    shop_id: str
    name: str
    cohort: str | None
    created_at: datetime
