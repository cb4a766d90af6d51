"""Storage protocols shared by the pipeline, the scanner and the API."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol


@dataclass(frozen=True)
class StagedFile:
    """Raw document fetched from the staging area."""

    content: bytes
    mime_type: str
    name: str


class ObjectStorage(Protocol):
    """Durable object storage for original and processed artifacts."""

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        """Persist bytes and return the object key."""

    def presigned_url(self, key: str, expires_in: int = 3600) -> str:
        """Return a time-limited read URL."""


class StagingArea(Protocol):
    """Hierarchical folder tree that invoice documents are dropped into."""

    def fetch(self, file_id: str) -> StagedFile:
        """Download a file with its MIME type and name."""

    def move(self, file_id: str, folder_id: str) -> None:
        """Move a file into ``folder_id``, detaching it from its current parents."""

    def find_folder(self, parent_id: str, name: str) -> dict[str, str] | None:
        """Return ``{"id", "name"}`` for a direct child folder or ``None``."""

    def find_or_create_folder(self, parent_id: str, name: str) -> str:
        """Return the id of a child folder, creating it when missing."""

    def list_folders(self, parent_id: str) -> list[dict[str, str]]:
        """List the direct child folders of ``parent_id``."""

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        """List the files directly inside ``folder_id``."""


class InMemoryStorage:
    """Simple in-memory storage used by tests and local development."""

    def __init__(self) -> None:
        self._store: dict[str, bytes] = {}
        self.content_types: dict[str, str | None] = {}

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        self._store[key] = data
        self.content_types[key] = content_type
        return key

    def get(self, key: str) -> bytes:
        return self._store[key]

    def __contains__(self, key: object) -> bool:
        return key in self._store

    def presigned_url(self, key: str, expires_in: int = 3600) -> str:
        if key not in self._store:
            raise KeyError(key)
        return f"memory://{key}?expires_in={expires_in}"


__all__ = ["InMemoryStorage", "ObjectStorage", "StagedFile", "StagingArea"]
