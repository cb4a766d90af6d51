"""Shared fixtures and in-memory collaborators for the unit suite."""

from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import Any, Callable

sys.path.append(str(Path(__file__).resolve().parents[4]))

os.environ.setdefault("DATABASE_URL", "sqlite:///./test_invoice.db")
os.environ.setdefault("AWS_S3_BUCKET_NAME", "local")
os.environ.setdefault("LOCAL_STORAGE_PATH", "/tmp/invoice-intelligence-tests")
os.environ.setdefault("JWT_SECRET", "test-secret")

import pytest
from sqlalchemy.orm import Session, sessionmaker

from app.backend.src.agents.invoice_pipeline import InvoicePipeline
from app.backend.src.core.storage import InMemoryStorage, StagedFile
from app.backend.src.db.session import build_engine, build_session_factory
from app.backend.src.models.base import Base
from app.backend.src.schemas.invoice import PurchaseContext, Recommendation, SavingsRange
from app.backend.src.services.google_drive import FolderResolver
from app.backend.src.services.ocr import PlaceholderExtractor

PDF_BYTES = b"%PDF-1.4\n1 0 obj\n<< /Type /Catalog >>\nendobj\n"

SHOP1_FOLDERS = {
    "shop1": {
        "unprocessed": "folder-shop1-unprocessed",
        "processed": "folder-shop1-processed",
        "failed": "folder-shop1-failed",
    }
}


class FakeStaging:
    """Folder tree and file store standing in for Google Drive."""

    def __init__(self) -> None:
        self.files: dict[str, StagedFile] = {}
        self.children: dict[str, dict[str, str]] = {}
        self.folder_files: dict[str, list[dict[str, Any]]] = {}
        self.moves: list[tuple[str, str]] = []
        self.fetch_failures = 0
        self.fetch_calls = 0
        self.move_error: Exception | None = None
        self._next_folder = 0

    def add_file(
        self,
        file_id: str,
        content: bytes = PDF_BYTES,
        mime_type: str = "application/pdf",
        name: str | None = None,
    ) -> None:
        self.files[file_id] = StagedFile(content=content, mime_type=mime_type, name=name or f"{file_id}.pdf")

    def fetch(self, file_id: str) -> StagedFile:
        self.fetch_calls += 1
        if self.fetch_failures > 0:
            self.fetch_failures -= 1
            raise ConnectionError("drive unavailable")
        try:
            return self.files[file_id]
        except KeyError:
            raise FileNotFoundError(file_id) from None

    def move(self, file_id: str, folder_id: str) -> None:
        if self.move_error is not None:
            raise self.move_error
        self.moves.append((file_id, folder_id))

    def find_folder(self, parent_id: str, name: str) -> dict[str, str] | None:
        folder_id = self.children.get(parent_id, {}).get(name)
        return {"id": folder_id, "name": name} if folder_id else None

    def find_or_create_folder(self, parent_id: str, name: str) -> str:
        existing = self.find_folder(parent_id, name)
        if existing is not None:
            return existing["id"]
        self._next_folder += 1
        folder_id = f"folder-{self._next_folder}"
        self.children.setdefault(parent_id, {})[name] = folder_id
        return folder_id

    def list_folders(self, parent_id: str) -> list[dict[str, str]]:
        return [
            {"id": folder_id, "name": name}
            for name, folder_id in self.children.get(parent_id, {}).items()
        ]

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        return list(self.folder_files.get(folder_id, []))


class StaticClassifier:
    def __init__(self) -> None:
        self.calls: list[tuple[Any, ...]] = []

    def classify(self, supplier_name, line_items, invoice_date, totals) -> PurchaseContext:
        self.calls.append((supplier_name, line_items, invoice_date, totals))
        return PurchaseContext(
            purchase_type="routine",
            confidence=0.9,
            explanation="Regular brake restock",
        )


class StaticRecommender:
    def recommend(self, supplier_name, line_items, totals) -> list[Recommendation]:
        return [
            Recommendation(
                type="price_match",
                title="Ask for a price match",
                description="Competitors list the same pads for less.",
                savings_range=SavingsRange(min=5, max=15),
                action_steps=["Call the supplier with a competitor quote"],
            )
        ]


class RaisingCollaborator:
    def classify(self, *args: Any, **kwargs: Any) -> PurchaseContext:
        raise RuntimeError("classifier offline")

    def recommend(self, *args: Any, **kwargs: Any) -> list[Recommendation]:
        raise RuntimeError("recommender offline")


@pytest.fixture()
def session_factory(tmp_path: Path) -> sessionmaker[Session]:
    engine = build_engine(f"sqlite:///{tmp_path / 'invoices.db'}")
    Base.metadata.create_all(bind=engine)
    yield build_session_factory(engine)
    engine.dispose()


@pytest.fixture()
def staging() -> FakeStaging:
    return FakeStaging()


@pytest.fixture()
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture()
def folders(staging: FakeStaging) -> FolderResolver:
    return FolderResolver(staging, folder_map=SHOP1_FOLDERS)


@pytest.fixture()
def make_pipeline(
    session_factory: sessionmaker[Session],
    staging: FakeStaging,
    storage: InMemoryStorage,
    folders: FolderResolver,
) -> Callable[..., InvoicePipeline]:
    def _make(**overrides: Any) -> InvoicePipeline:
        options: dict[str, Any] = {
            "session_factory": session_factory,
            "staging": staging,
            "storage": storage,
            "folders": folders,
            "extractor": PlaceholderExtractor(),
            "classifier": StaticClassifier(),
            "recommender": StaticRecommender(),
        }
        options.update(overrides)
        return InvoicePipeline(**options)

    return _make
