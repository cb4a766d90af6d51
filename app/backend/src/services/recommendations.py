"""Savings recommendations from the Perplexity chat completions API."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any, Protocol

import httpx
import structlog
from pydantic import ValidationError

from app.backend.src.schemas.invoice import (
    InvoiceTotals,
    LineItem,
    Recommendation,
    RecommendationSummary,
    SavingsRange,
)

from .json_utils import extract_json_array

LOGGER = structlog.get_logger(__name__)

PERPLEXITY_URL = "https://api.perplexity.ai/chat/completions"
SYSTEM_PROMPT = (
    "You are a procurement expert helping auto shops save money. Always respond "
    "with valid JSON arrays only, no additional text or markdown."
)


def build_recommendation_prompt(
    supplier_name: str, line_items: Sequence[LineItem], totals: InvoiceTotals
) -> str:
    items = ", ".join(
        f"{item.description}{f' (SKU: {item.sku})' if item.sku else ''} - ${item.unit_price:.2f}"
        for item in line_items
    )
    return f"""An auto shop purchased parts from {supplier_name}:
{items}
Total: ${totals.total:.2f}

Provide actionable savings recommendations. Consider:
1. Alternative suppliers with better pricing (RockAuto, PartsGeek, CarParts.com, etc.)
2. Bulk order opportunities (volume discounts)
3. Price matching strategies (calling suppliers to match competitor prices)
4. Other cost-saving opportunities

For each recommendation, provide a JSON object with:
- type: "alternative_supplier" | "bulk_order" | "price_match" | "other"
- title: Short descriptive title
- description: Detailed explanation of the recommendation
- savingsRange: {{ min: number, max: number }} - Estimated dollar savings range
- savingsPercentRange: {{ min: number, max: number }} - Estimated percentage savings range (0-100)
- confidence: Number between 0-1
- evidence: Array of strings with specific sources, prices, or data points
- actionSteps: Array of specific actionable steps to achieve these savings
- estimatedTimeToImplement: String describing time needed (e.g., "1-2 weeks", "immediate")

Provide realistic savings ranges based on typical auto parts pricing and use actual
supplier names. Respond with a JSON array of recommendations only, no additional text or markdown."""


def parse_recommendations(raw: str | None) -> list[Recommendation]:
    """Parse a free-text model response into validated recommendations.

    Items lacking ``type``, ``title`` or ``description`` are dropped. An
    unparseable response yields an empty list.
    """

    try:
        items = extract_json_array(raw)
    except ValueError:
        return []

    recommendations: list[Recommendation] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        if not (item.get("type") and item.get("title") and item.get("description")):
            continue
        try:
            recommendations.append(Recommendation.model_validate(item))
        except ValidationError as exc:
            LOGGER.warning("recommendation_invalid", title=item.get("title"), error=str(exc))
    return recommendations


def _message_content(data: Any) -> str | None:
    """Return the first choice's message content, or ``None`` for any other shape."""

    choices = data.get("choices") if isinstance(data, dict) else None
    if not isinstance(choices, list) or not choices:
        return None
    first = choices[0]
    message = first.get("message") if isinstance(first, dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    return content if isinstance(content, str) else None


class SavingsRecommender(Protocol):
    def recommend(
        self, supplier_name: str, line_items: Sequence[LineItem], totals: InvoiceTotals
    ) -> list[Recommendation]:
        """Return recommendations; never raises."""


class PerplexityRecommender:
    def __init__(
        self,
        *,
        api_key: str | None,
        model: str = "llama-3.1-sonar-small-128k-online",
        timeout: float = 30.0,
        client: httpx.Client | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.timeout = timeout
        self._client = client

    def _post(self, payload: dict[str, Any]) -> httpx.Response:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if self._client is not None:
            return self._client.post(PERPLEXITY_URL, json=payload, headers=headers, timeout=self.timeout)
        with httpx.Client(timeout=self.timeout) as client:
            return client.post(PERPLEXITY_URL, json=payload, headers=headers)

    def recommend(
        self, supplier_name: str, line_items: Sequence[LineItem], totals: InvoiceTotals
    ) -> list[Recommendation]:
        if not self.api_key:
            LOGGER.warning("perplexity_not_configured")
            return []

        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_recommendation_prompt(supplier_name, line_items, totals),
                },
            ],
            "temperature": 0.3,
            "max_tokens": 2000,
        }

        try:
            response = self._post(payload)
            response.raise_for_status()
            content = _message_content(response.json())
        except httpx.HTTPStatusError as exc:
            LOGGER.error(
                "perplexity_request_failed",
                status_code=exc.response.status_code,
                body=exc.response.text[:500],
            )
            return []
        except (httpx.HTTPError, ValueError) as exc:
            LOGGER.error("perplexity_request_failed", error=str(exc))
            return []

        if not content:
            LOGGER.warning("perplexity_empty_response")
            return []

        recommendations = parse_recommendations(content)
        LOGGER.info("recommendations_generated", count=len(recommendations))
        return recommendations


def calculate_recommendation_summary(
    recommendations: Iterable[Recommendation], invoice_total: float
) -> RecommendationSummary:
    """Aggregate savings across recommendations.

    Dollar and percent ranges are summed; recommendations carrying only the
    legacy ``potential_savings`` contribute a band of +/-20% around it.
    """

    recommendations = list(recommendations)
    if not recommendations:
        return RecommendationSummary()

    min_savings = max_savings = 0.0
    min_percent = max_percent = 0.0
    steps: list[str] = []

    for rec in recommendations:
        if rec.savings_range is not None:
            min_savings += rec.savings_range.min
            max_savings += rec.savings_range.max
        elif rec.potential_savings:
            min_savings += rec.potential_savings * 0.8
            max_savings += rec.potential_savings * 1.2

        if rec.savings_percent_range is not None:
            min_percent += rec.savings_percent_range.min
            max_percent += rec.savings_percent_range.max
        elif rec.potential_savings and invoice_total > 0:
            percent = rec.potential_savings / invoice_total * 100
            min_percent += percent * 0.8
            max_percent += percent * 1.2

        steps.extend(rec.action_steps)

    max_percent = min(max_percent, 100.0)

    return RecommendationSummary(
        total_savings_range=SavingsRange(min=min_savings, max=max_savings),
        total_savings_percent_range=SavingsRange(min=min_percent, max=max_percent),
        estimated_total_savings=(min_savings + max_savings) / 2,
        estimated_total_savings_percent=(min_percent + max_percent) / 2,
        combined_action_steps=list(dict.fromkeys(steps)),
        recommendation_count=len(recommendations),
    )


__all__ = [
    "PERPLEXITY_URL",
    "PerplexityRecommender",
    "SavingsRecommender",
    "build_recommendation_prompt",
    "calculate_recommendation_summary",
    "parse_recommendations",
]
