from __future__ import annotations

import json

import pytest
from sqlalchemy import select

from conftest import PDF_BYTES, RaisingCollaborator

from app.backend.src.agents.invoice_pipeline import (
    DuplicateInvoiceError,
    InvoicePipeline,
    LeaseLostError,
    MissingSourceFileError,
)
from app.backend.src.models import Invoice, Part, Shop, Supplier
from app.backend.src.services.google_drive import FolderResolver
from app.backend.src.services.invoice_queue import enqueue_invoice


def _enqueue(session_factory, shop_id: str = "shop1", drive_file_id: str | None = "drive-1") -> int:
    with session_factory() as session:
        invoice = enqueue_invoice(session, shop_id=shop_id, drive_file_id=drive_file_id)
        session.commit()
        return invoice.id


def _load(session_factory, invoice_id: int) -> Invoice:
    with session_factory() as session:
        return session.get(Invoice, invoice_id)


def test_pipeline_processes_invoice_end_to_end(session_factory, staging, storage, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory)
    pipeline = make_pipeline()

    result = pipeline.process_next()

    assert result is not None and result.id == invoice_id
    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "processed"
    assert invoice.processing_stage == "completed"
    assert invoice.processing_attempts == 0
    assert invoice.processing_locked_at is None
    assert invoice.totals["total"] == pytest.approx(109.34)
    assert invoice.line_items[0]["unitPrice"] == pytest.approx(45.99)
    assert invoice.invoice_number == "INV-001"
    assert len(invoice.hash_sha256) == 64
    assert invoice.original_s3_key == f"shops/shop1/invoices/{invoice_id}/original.pdf"
    assert invoice.processed_s3_key == f"shops/shop1/invoices/{invoice_id}/processed.json"
    assert invoice.context["purchaseType"] == "routine"
    assert invoice.trend_analysis == {"anomalies": ["No historical data available for comparison"]}
    assert invoice.recommendations[0]["potentialSavings"] == pytest.approx(10.0)

    assert storage.get(invoice.original_s3_key) == PDF_BYTES
    assert storage.content_types[invoice.original_s3_key] == "application/pdf"
    artifact = json.loads(storage.get(invoice.processed_s3_key))
    assert set(artifact) == {"extractedData", "context", "trendAnalysis", "recommendations", "processedAt"}
    assert artifact["extractedData"]["supplierName"] == "Unknown Supplier"
    assert artifact["extractedData"]["totals"]["total"] == pytest.approx(109.34)
    assert storage.content_types[invoice.processed_s3_key] == "application/json"

    assert staging.moves == [("drive-1", "folder-shop1-processed")]


def test_pipeline_resolves_entities(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory)

    make_pipeline().process_next()

    with session_factory() as session:
        invoice = session.get(Invoice, invoice_id)
        supplier = session.get(Supplier, invoice.supplier_id)
        assert supplier.normalized_name == "unknown supplier"
        assert supplier.aliases == ["Unknown Supplier"]
        assert session.scalars(select(Shop.shop_id)).all() == ["shop1"]
        parts = session.scalars(select(Part)).all()
        assert [(part.normalized_desc, part.sku) for part in parts] == [("brake pad set", "BP-12345")]


def test_pipeline_returns_none_when_idle(make_pipeline) -> None:
    assert make_pipeline().process_next() is None


def test_duplicate_content_is_rejected_with_original_id(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    staging.add_file("drive-2")
    pipeline = make_pipeline()
    first_id = _enqueue(session_factory, drive_file_id="drive-1")
    pipeline.process_next()
    second_id = _enqueue(session_factory, drive_file_id="drive-2")

    with pytest.raises(DuplicateInvoiceError) as exc_info:
        pipeline.process_next()

    assert exc_info.value.duplicate_of == first_id
    assert str(first_id) in str(exc_info.value)
    duplicate = _load(session_factory, second_id)
    assert duplicate.status == "queued"
    assert duplicate.processing_stage == "queued"
    assert duplicate.processing_attempts == 1
    assert duplicate.processing_locked_at is None
    assert duplicate.processing_last_error == f"Duplicate invoice detected: {first_id}"
    assert _load(session_factory, first_id).status == "processed"


def test_invoice_fails_after_max_attempts(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    staging.fetch_failures = 10
    invoice_id = _enqueue(session_factory)
    pipeline = make_pipeline()

    for expected_attempts in (1, 2):
        with pytest.raises(ConnectionError):
            pipeline.process_next()
        invoice = _load(session_factory, invoice_id)
        assert invoice.status == "queued"
        assert invoice.processing_attempts == expected_attempts

    with pytest.raises(ConnectionError):
        pipeline.process_next()

    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "failed"
    assert invoice.processing_stage == "failed"
    assert invoice.processing_attempts == 3
    assert invoice.processing_last_error == "drive unavailable"
    assert staging.moves == [("drive-1", "folder-shop1-failed")]
    assert pipeline.process_next() is None


def test_invoice_succeeds_after_two_failures(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    staging.fetch_failures = 2
    invoice_id = _enqueue(session_factory)
    pipeline = make_pipeline()

    for _ in range(2):
        with pytest.raises(ConnectionError):
            pipeline.process_next()

    assert pipeline.process_next().id == invoice_id
    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "processed"
    assert invoice.processing_attempts == 2
    assert staging.fetch_calls == 3


def test_missing_source_file_counts_as_attempt(session_factory, make_pipeline) -> None:
    invoice_id = _enqueue(session_factory, drive_file_id=None)

    with pytest.raises(MissingSourceFileError):
        make_pipeline().process_next()

    invoice = _load(session_factory, invoice_id)
    assert invoice.processing_attempts == 1
    assert "missing drive_file_id" in invoice.processing_last_error


def test_failing_classifier_and_recommender_are_absorbed(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory)
    raising = RaisingCollaborator()

    make_pipeline(classifier=raising, recommender=raising).process_next()

    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "processed"
    assert invoice.processing_attempts == 0
    assert invoice.context == {
        "purchaseType": "routine",
        "constraints": {},
        "confidence": 0.5,
        "explanation": "Classification failed, defaulting to routine",
    }
    assert invoice.recommendations == []


def test_move_failure_does_not_fail_the_invoice(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory, shop_id="unmapped-shop")
    # No mapping and no base folder, so folder resolution itself fails.
    pipeline = make_pipeline(folders=FolderResolver(staging))

    pipeline.process_next()

    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "processed"
    assert staging.moves == []


def test_unknown_mime_type_falls_back_to_content_sniffing(session_factory, staging, storage, make_pipeline) -> None:
    staging.add_file("drive-1", content=b"\x89PNG\r\n\x1a\nrest", mime_type="application/octet-stream")
    invoice_id = _enqueue(session_factory)

    make_pipeline().process_next()

    assert f"shops/shop1/invoices/{invoice_id}/original.png" in storage


def test_cancel_during_stage_abandons_the_run(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory)

    class CancellingClassifier:
        def classify(self, supplier_name, line_items, invoice_date, totals):
            with session_factory() as other:
                invoice = other.get(Invoice, invoice_id)
                invoice.status = "queued"
                invoice.processing_stage = "queued"
                invoice.processing_locked_at = None
                other.commit()
            return RaisingCollaborator().classify()

    pipeline: InvoicePipeline = make_pipeline(classifier=CancellingClassifier())

    with pytest.raises(LeaseLostError):
        pipeline.process_next()

    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "queued"
    assert invoice.processing_attempts == 0
    assert invoice.processed_s3_key is None


def test_cancel_after_final_lease_check_is_not_overwritten(session_factory, staging, make_pipeline) -> None:
    staging.add_file("drive-1")
    invoice_id = _enqueue(session_factory)

    class LateCancelPipeline(InvoicePipeline):
        def _ensure_lease(self, session, invoice, lease) -> None:
            super()._ensure_lease(session, invoice, lease)
            # Only the check made by _finalize runs once the stage is "persisting".
            if invoice.processing_stage != "persisting":
                return
            with session_factory() as other:
                current = other.get(Invoice, invoice_id)
                current.status = "queued"
                current.processing_stage = "queued"
                current.processing_locked_at = None
                other.commit()

    pipeline = make_pipeline()
    late = LateCancelPipeline(**vars(pipeline))

    with pytest.raises(LeaseLostError) as excinfo:
        late.process_next()

    assert excinfo.value.status == "queued"
    invoice = _load(session_factory, invoice_id)
    assert invoice.status == "queued"
    assert invoice.processing_stage == "queued"
    assert invoice.processing_attempts == 0
    assert staging.moves == []
