"""Google Drive staging area and per-shop folder resolution."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Literal

import google.auth
import structlog
from google.oauth2 import service_account
from googleapiclient.discovery import build

from app.backend.src.core.config import Settings, get_settings
from app.backend.src.core.storage import StagedFile, StagingArea

LOGGER = structlog.get_logger(__name__)

DRIVE_SCOPES = ["https://www.googleapis.com/auth/drive"]
FOLDER_MIME_TYPE = "application/vnd.google-apps.folder"
INVOICES_FOLDER_NAME = "Invoices"
PAGE_SIZE = 100

FolderKind = Literal["unprocessed", "processed", "failed"]
FOLDER_KINDS: tuple[str, ...] = ("unprocessed", "processed", "failed")


class FolderResolutionError(RuntimeError):
    """Raised when a shop folder cannot be located or created."""


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace("'", "\\'")


class GoogleDriveStaging:
    """Staging area backed by the Google Drive v3 API."""

    def __init__(self, service: Any | None = None, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._service = service

    def _build_service(self) -> Any:
        credentials_path = self.settings.google_application_credentials
        if credentials_path:
            credentials = service_account.Credentials.from_service_account_file(
                credentials_path, scopes=DRIVE_SCOPES
            )
        else:
            credentials, _ = google.auth.default(scopes=DRIVE_SCOPES)
        LOGGER.info("google_drive_client_initialized", keyfile=bool(credentials_path))
        return build("drive", "v3", credentials=credentials, cache_discovery=False)

    @property
    def service(self) -> Any:
        if self._service is None:
            self._service = self._build_service()
        return self._service

    def fetch(self, file_id: str) -> StagedFile:
        files = self.service.files()
        metadata = files.get(fileId=file_id, fields="name, mimeType").execute()
        content = files.get_media(fileId=file_id).execute()
        LOGGER.info("drive_file_downloaded", file_id=file_id, size=len(content))
        return StagedFile(
            content=content,
            mime_type=metadata.get("mimeType") or "application/octet-stream",
            name=metadata.get("name") or "unknown",
        )

    def move(self, file_id: str, folder_id: str) -> None:
        files = self.service.files()
        current = files.get(fileId=file_id, fields="parents").execute()
        parents = ",".join(current.get("parents") or [])
        files.update(
            fileId=file_id,
            addParents=folder_id,
            removeParents=parents or None,
            fields="id, parents",
        ).execute()
        LOGGER.info("drive_file_moved", file_id=file_id, folder_id=folder_id)

    def find_folder(self, parent_id: str, name: str) -> dict[str, str] | None:
        response = (
            self.service.files()
            .list(
                q=(
                    f"'{_quote(parent_id)}' in parents and name='{_quote(name)}' "
                    f"and mimeType='{FOLDER_MIME_TYPE}' and trashed=false"
                ),
                fields="files(id, name)",
                pageSize=1,
            )
            .execute()
        )
        found = response.get("files") or []
        if not found:
            return None
        return {"id": found[0]["id"], "name": found[0].get("name") or name}

    def find_or_create_folder(self, parent_id: str, name: str) -> str:
        existing = self.find_folder(parent_id, name)
        if existing is not None:
            return existing["id"]

        created = (
            self.service.files()
            .create(
                body={"name": name, "mimeType": FOLDER_MIME_TYPE, "parents": [parent_id]},
                fields="id",
            )
            .execute()
        )
        LOGGER.info("drive_folder_created", parent_id=parent_id, name=name, folder_id=created["id"])
        return created["id"]

    def _list(self, query: str, fields: str) -> list[dict[str, Any]]:
        results: list[dict[str, Any]] = []
        page_token: str | None = None
        while True:
            response = (
                self.service.files()
                .list(
                    q=query,
                    fields=f"nextPageToken, files({fields})",
                    pageSize=PAGE_SIZE,
                    pageToken=page_token,
                )
                .execute()
            )
            results.extend(item for item in response.get("files") or [] if item.get("id"))
            page_token = response.get("nextPageToken")
            if not page_token:
                return results

    def list_folders(self, parent_id: str) -> list[dict[str, str]]:
        folders = self._list(
            f"'{_quote(parent_id)}' in parents and mimeType='{FOLDER_MIME_TYPE}' and trashed=false",
            "id, name",
        )
        return [{"id": item["id"], "name": item.get("name") or "unknown"} for item in folders]

    def list_files(self, folder_id: str) -> list[dict[str, Any]]:
        return self._list(
            f"'{_quote(folder_id)}' in parents and trashed=false",
            "id, name, mimeType",
        )


class FolderResolver:
    """Resolve the Drive folder for a shop and folder kind.

    An explicit ``{shop_id: {kind: folder_id}}`` mapping is consulted first.
    Otherwise the folder is discovered (and created if missing) under
    ``<base>/Invoices/<shop_id>/<kind>``.
    """

    def __init__(
        self,
        staging: StagingArea,
        base_folder_id: str | None = None,
        folder_map: Mapping[str, Mapping[str, str]] | None = None,
    ) -> None:
        self.staging = staging
        self.base_folder_id = base_folder_id
        self.folder_map = {shop: dict(kinds) for shop, kinds in (folder_map or {}).items()}

    def resolve(self, shop_id: str, kind: FolderKind) -> str:
        if kind not in FOLDER_KINDS:
            raise ValueError(f"Unknown folder kind: {kind}")

        mapped = self.folder_map.get(shop_id, {}).get(kind)
        if mapped:
            return mapped

        if not self.base_folder_id:
            raise FolderResolutionError(
                f"No folder configured for {shop_id}/{kind} and GOOGLE_DRIVE_BASE_FOLDER_ID is not set"
            )

        try:
            invoices_folder = self.staging.find_or_create_folder(
                self.base_folder_id, INVOICES_FOLDER_NAME
            )
            shop_folder = self.staging.find_or_create_folder(invoices_folder, shop_id)
            return self.staging.find_or_create_folder(shop_folder, kind)
        except Exception as exc:
            LOGGER.error("drive_folder_resolution_failed", shop_id=shop_id, kind=kind, error=str(exc))
            raise FolderResolutionError(
                f"Failed to resolve folder {shop_id}/{kind}: {exc}"
            ) from exc


__all__ = [
    "FOLDER_KINDS",
    "FolderResolutionError",
    "FolderResolver",
    "GoogleDriveStaging",
    "INVOICES_FOLDER_NAME",
]
