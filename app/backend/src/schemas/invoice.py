"""Invoice value types and API schemas."""

from __future__ import annotations

import math
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

PurchaseType = Literal["routine", "rush", "specialty"]

DEFAULT_CONFIDENCE = 0.5


class CamelModel(BaseModel):
    """Value type stored and exchanged with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class LineItem(CamelModel):
    description: str
    sku: str | None = None
    mpn: str | None = None
    quantity: float = 0
    unit_price: float = 0
    total: float = 0
    confidence: float | None = None


class InvoiceTotals(CamelModel):
    subtotal: float = 0
    tax: float = 0
    shipping: float = 0
    total: float = 0


class ExtractedInvoice(CamelModel):
    """Structured result of the extraction step."""

    supplier_name: str
    invoice_number: str | None = None
    invoice_date: datetime | None = None
    line_items: list[LineItem] = Field(default_factory=list)
    totals: InvoiceTotals = Field(default_factory=InvoiceTotals)


class PurchaseConstraints(CamelModel):
    speed: bool | None = None
    availability: bool | None = None
    relationship: bool | None = None


class PurchaseContext(CamelModel):
    purchase_type: PurchaseType = "routine"
    constraints: PurchaseConstraints = Field(default_factory=PurchaseConstraints)
    confidence: float = DEFAULT_CONFIDENCE
    explanation: str = ""


class TrendAnalysis(CamelModel):
    price_change: float | None = None
    price_change_percent: float | None = None
    volatility: float | None = None
    anomalies: list[str] | None = None


class SavingsRange(CamelModel):
    min: float = 0
    max: float = 0

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2


class Recommendation(CamelModel):
    """A savings recommendation.

    ``potential_savings`` is the legacy single-figure estimate. When it is
    absent it is derived from the midpoint of ``savings_range`` so the two
    never disagree for newly generated recommendations.
    """

    # Usually alternative_supplier, bulk_order, price_match or other; kept as returned.
    type: str
    title: str
    description: str
    savings_range: SavingsRange | None = None
    savings_percent_range: SavingsRange | None = None
    potential_savings: float | None = None
    confidence: float = DEFAULT_CONFIDENCE
    evidence: list[str] = Field(default_factory=list)
    action_steps: list[str] = Field(default_factory=list)
    estimated_time_to_implement: str | None = None

    @field_validator("confidence", mode="before")
    @classmethod
    def _coerce_confidence(cls, value: Any) -> float:
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return DEFAULT_CONFIDENCE
        if math.isnan(value):
            return DEFAULT_CONFIDENCE
        return float(value)

    @field_validator("evidence", "action_steps", mode="before")
    @classmethod
    def _coerce_string_list(cls, value: Any) -> list[str]:
        if not isinstance(value, list):
            return []
        return [str(item) for item in value if item is not None]

    @field_validator("savings_range", "savings_percent_range", mode="before")
    @classmethod
    def _drop_malformed_range(cls, value: Any) -> Any:
        if isinstance(value, dict) and all(
            isinstance(value.get(bound), (int, float)) and not isinstance(value.get(bound), bool)
            for bound in ("min", "max")
        ):
            return value
        if isinstance(value, SavingsRange):
            return value
        return None

    @model_validator(mode="after")
    def _derive_potential_savings(self) -> "Recommendation":
        if not self.potential_savings and self.savings_range is not None:
            self.potential_savings = self.savings_range.midpoint
        return self


class RecommendationSummary(CamelModel):
    total_savings_range: SavingsRange = Field(default_factory=SavingsRange)
    total_savings_percent_range: SavingsRange = Field(default_factory=SavingsRange)
    estimated_total_savings: float = 0
    estimated_total_savings_percent: float = 0
    combined_action_steps: list[str] = Field(default_factory=list)
    recommendation_count: int = 0


class ProcessingState(BaseModel):
    """Checkpoint sub-record exposed through the API."""

    model_config = ConfigDict(populate_by_name=True)

    stage: str
    attempts: int
    locked_at: datetime | None = Field(default=None, alias="lockedAt")
    last_error: str | None = Field(default=None, alias="lastError")


class InvoiceRead(BaseModel):
    """Schema for invoice records exposed via the API."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    shop_id: str
    supplier_id: int | None
    status: str
    drive_file_id: str | None
    drive_url: str | None
    original_s3_key: str | None
    processed_s3_key: str | None
    hash_sha256: str | None
    invoice_number: str | None
    invoice_date: datetime | None
    totals: dict[str, Any] | None
    line_items: list[Any] | None
    context: dict[str, Any] | None
    trend_analysis: dict[str, Any] | None
    recommendations: list[Any] | None
    processing: ProcessingState
    created_at: datetime
    updated_at: datetime


class InvoiceDetail(InvoiceRead):
    summary: RecommendationSummary | None = None


class PresignedUrlRead(BaseModel):
    url: str
    expires_in: int


class UnlockResult(BaseModel):
    unlocked: int
    invoice_ids: list[int]


__all__ = [
    "CamelModel",
    "ExtractedInvoice",
    "InvoiceDetail",
    "InvoiceRead",
    "InvoiceTotals",
    "LineItem",
    "PresignedUrlRead",
    "ProcessingState",
    "PurchaseConstraints",
    "PurchaseContext",
    "Recommendation",
    "RecommendationSummary",
    "SavingsRange",
    "TrendAnalysis",
    "UnlockResult",
]
