from __future__ import annotations

from datetime import timedelta
from unittest.mock import Mock

import pytest

from app.backend.src.models import Invoice, Supplier
from app.backend.src.models.base import utc_now
from app.backend.src.services.trend_analysis import analyze_trends

LINE_ITEMS = [{"description": "Brake Pad Set", "quantity": 1, "unitPrice": 10.0, "total": 10.0}]


@pytest.fixture()
def supplier_ids(session_factory) -> tuple[int, int]:
    with session_factory() as session:
        acme = Supplier(normalized_name="acme parts")
        other = Supplier(normalized_name="other parts")
        session.add_all([acme, other])
        session.commit()
        return acme.id, other.id


def _invoice(session, supplier_id, total, *, status="processed", shop_id="shop1", days_ago=1, line_items=LINE_ITEMS):
    invoice = Invoice(
        shop_id=shop_id,
        supplier_id=supplier_id,
        status=status,
        totals={"total": total} if total is not None else None,
        line_items=line_items,
        invoice_date=utc_now() - timedelta(days=days_ago),
    )
    session.add(invoice)
    session.flush()
    return invoice


def test_no_history_reports_missing_comparison(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        current = _invoice(session, acme, 100.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.anomalies == ["No historical data available for comparison"]
    assert result.price_change is None


def test_history_without_totals_is_reported(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, None)
        _invoice(session, acme, 0)
        current = _invoice(session, acme, 100.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.anomalies == ["Historical invoices missing total amounts"]


def test_price_increase_beyond_threshold_is_flagged(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, 80.0, days_ago=2)
        _invoice(session, acme, 120.0, days_ago=1)
        current = _invoice(session, acme, 150.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.price_change == pytest.approx(50.0)
    assert result.price_change_percent == pytest.approx(50.0)
    assert result.volatility == pytest.approx(20.0)
    assert result.anomalies == ["Price increased by 50.0% compared to average"]


def test_price_decrease_beyond_threshold_is_flagged(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, 200.0)
        current = _invoice(session, acme, 150.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.price_change == pytest.approx(-50.0)
    assert result.volatility == pytest.approx(0.0)
    assert result.anomalies == ["Price decreased by 25.0% compared to average"]


def test_small_change_has_no_anomalies(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, 100.0)
        current = _invoice(session, acme, 110.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.price_change_percent == pytest.approx(10.0)
    assert result.anomalies is None
    assert result.to_document() == {
        "priceChange": pytest.approx(10.0),
        "priceChangePercent": pytest.approx(10.0),
        "volatility": 0.0,
    }


def test_history_ignores_other_suppliers_shops_and_statuses(session_factory, supplier_ids) -> None:
    acme, other = supplier_ids
    with session_factory() as session:
        _invoice(session, other, 1000.0)
        _invoice(session, acme, 1000.0, shop_id="shop2")
        _invoice(session, acme, 1000.0, status="failed")
        _invoice(session, acme, 1000.0, status="queued")
        _invoice(session, acme, 100.0)
        current = _invoice(session, acme, 100.0, status="processing", days_ago=0)

        result = analyze_trends(session, current)

    assert result.price_change == pytest.approx(0.0)
    assert result.anomalies is None


def test_history_is_limited_to_most_recent_invoices(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, 1000.0, days_ago=30)
        _invoice(session, acme, 100.0, days_ago=2)
        _invoice(session, acme, 100.0, days_ago=1)
        current = _invoice(session, acme, 100.0, status="processing", days_ago=0)

        result = analyze_trends(session, current, history_limit=2)

    assert result.price_change == pytest.approx(0.0)


def test_missing_line_items_are_flagged(session_factory, supplier_ids) -> None:
    acme, _ = supplier_ids
    with session_factory() as session:
        _invoice(session, acme, 100.0)
        current = _invoice(session, acme, 100.0, status="processing", days_ago=0, line_items=[])

        result = analyze_trends(session, current)

    assert result.anomalies == ["Invoice has no line items"]


def test_query_errors_produce_fallback() -> None:
    session = Mock()
    session.scalars.side_effect = RuntimeError("database gone")
    invoice = Invoice(id=1, shop_id="shop1", supplier_id=1)

    result = analyze_trends(session, invoice)

    assert result.anomalies == ["Error analyzing trends"]
    session.rollback.assert_called_once_with()
