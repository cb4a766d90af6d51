"""Purchase context classification backed by OpenAI chat completions."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Any, Protocol

import structlog
from openai import OpenAI
from pydantic import ValidationError

from app.backend.src.models.base import utc_now
from app.backend.src.schemas.invoice import InvoiceTotals, LineItem, PurchaseContext

from .json_utils import extract_json_object

LOGGER = structlog.get_logger(__name__)

SYSTEM_PROMPT = (
    "You are an expert at analyzing auto shop invoices and understanding purchase "
    "patterns. Always respond with valid JSON."
)


def fallback_context() -> PurchaseContext:
    return PurchaseContext(
        purchase_type="routine",
        confidence=0.5,
        explanation="Classification failed, defaulting to routine",
    )


def build_classification_prompt(
    supplier_name: str,
    line_items: Sequence[LineItem],
    invoice_date: datetime,
    totals: InvoiceTotals,
) -> str:
    items = "\n".join(
        f"{index}. {item.description} - Qty: {item.quantity:g} - Price: ${item.unit_price:.2f}"
        for index, item in enumerate(line_items, start=1)
    )
    return f"""Analyze this auto shop invoice and classify the purchase context.

Supplier: {supplier_name}
Invoice Date: {invoice_date.date().isoformat()}
Total Amount: ${totals.total:.2f}
Line Items:
{items}

Classify this purchase as one of:
- routine: Standard, planned purchase
- rush: Urgent/time-sensitive order
- specialty: Unusual or specialized parts/equipment

Also identify constraints:
- speed: Time-sensitive delivery needed
- availability: Limited availability/hard-to-find items
- relationship: Supplier relationship factors important

Respond with a JSON object:
{{
  "purchaseType": "routine" | "rush" | "specialty",
  "constraints": {{"speed": boolean, "availability": boolean, "relationship": boolean}},
  "confidence": number (0-1),
  "explanation": "brief explanation"
}}"""


class ContextClassifier(Protocol):
    def classify(
        self,
        supplier_name: str,
        line_items: Sequence[LineItem],
        invoice_date: datetime | None,
        totals: InvoiceTotals,
    ) -> PurchaseContext:
        """Classify the purchase; never raises."""


class OpenAIContextClassifier:
    """Classify invoices with an OpenAI chat model, degrading to a routine default."""

    def __init__(
        self,
        client: Any | None = None,
        *,
        api_key: str | None = None,
        model: str = "gpt-4",
        temperature: float = 0.3,
    ) -> None:
        self._client = client
        self.api_key = api_key
        self.model = model
        self.temperature = temperature

    def _get_client(self) -> Any:
        if self._client is None:
            if not self.api_key:
                raise RuntimeError("OPENAI_API_KEY is not configured")
            self._client = OpenAI(api_key=self.api_key)
        return self._client

    def classify(
        self,
        supplier_name: str,
        line_items: Sequence[LineItem],
        invoice_date: datetime | None,
        totals: InvoiceTotals,
    ) -> PurchaseContext:
        prompt = build_classification_prompt(
            supplier_name, line_items, invoice_date or utc_now(), totals
        )
        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                response_format={"type": "json_object"},
            )
            content = response.choices[0].message.content if response.choices else None
            if not content:
                raise ValueError("No response from OpenAI")
            return PurchaseContext.model_validate(extract_json_object(content))
        except (ValidationError, ValueError) as exc:
            LOGGER.warning("context_classification_unparseable", error=str(exc))
            return fallback_context()
        except Exception as exc:
            LOGGER.error("context_classification_failed", error=str(exc))
            return fallback_context()


__all__ = [
    "ContextClassifier",
    "OpenAIContextClassifier",
    "build_classification_prompt",
    "fallback_context",
]
