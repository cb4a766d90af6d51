"""S3 object storage for original and processed invoice artifacts."""

from __future__ import annotations

import re
import urllib.parse
from functools import lru_cache
from io import BytesIO
from pathlib import Path

import boto3
from botocore.client import BaseClient
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError, NoCredentialsError
import structlog

from app.backend.src.core.config import Settings, get_settings

LOGGER = structlog.get_logger(__name__)

MIME_EXTENSIONS: dict[str, str] = {
    "application/pdf": "pdf",
    "image/png": "png",
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet": "xlsx",
    "application/vnd.ms-excel": "xls",
}

# Leading bytes of the formats above, checked when the MIME type is unknown.
MAGIC_EXTENSIONS: tuple[tuple[bytes, str], ...] = (
    (b"%PDF", "pdf"),
    (b"\x89PNG\r\n\x1a\n", "png"),
    (b"\xff\xd8\xff", "jpg"),
    (b"PK\x03\x04", "xlsx"),
    (b"\xd0\xcf\x11\xe0\xa1\xb1\x1a\xe1", "xls"),
)


def file_extension_for(mime_type: str | None, content: bytes | None = None) -> str:
    """Return the artifact extension for ``mime_type``, sniffing ``content`` as a fallback."""

    extension = MIME_EXTENSIONS.get((mime_type or "").lower())
    if extension:
        return extension
    if content:
        for signature, candidate in MAGIC_EXTENSIONS:
            if content.startswith(signature):
                return candidate
    return "bin"


def build_original_key(shop_id: str, invoice_id: int | str, extension: str) -> str:
    return f"shops/{shop_id}/invoices/{invoice_id}/original.{extension}"


def build_processed_key(shop_id: str, invoice_id: int | str) -> str:
    return f"shops/{shop_id}/invoices/{invoice_id}/processed.json"


def sanitize_object_key(key: str) -> str:
    """Minimal, safe normalization that preserves exact S3 key semantics."""

    if not key:
        return ""

    sanitized = str(key).strip().strip('"').strip("'")
    sanitized = urllib.parse.unquote(sanitized)
    sanitized = re.sub(r"/+", "/", sanitized)
    if sanitized.startswith("/"):
        sanitized = sanitized[1:]
    return sanitized


@lru_cache()
def _resolve_bucket_region(
    bucket: str,
    configured_region: str | None,
    access_key_id: str | None,
    secret_access_key: str | None,
) -> str | None:
    """Return the region for ``bucket``, falling back to the configured one."""

    session_kwargs: dict[str, str] = {}
    if access_key_id and secret_access_key:
        session_kwargs["aws_access_key_id"] = access_key_id
        session_kwargs["aws_secret_access_key"] = secret_access_key
    if configured_region:
        session_kwargs["region_name"] = configured_region

    try:
        session = boto3.session.Session(**session_kwargs)
        client = session.client("s3", config=Config(signature_version="s3v4"))
        response = client.get_bucket_location(Bucket=bucket)
        region = response.get("LocationConstraint") or "us-east-1"
        if configured_region and configured_region != region:
            LOGGER.warning(
                "s3_region_mismatch",
                bucket=bucket,
                configured=configured_region,
                resolved=region,
            )
        else:
            LOGGER.info("resolved_s3_region", bucket=bucket, region=region)
        return region
    except (BotoCoreError, NoCredentialsError, ClientError) as exc:
        LOGGER.warning("resolve_s3_region_failed", error=str(exc))
        return configured_region


class S3Storage:
    """Object storage backed by S3, or by a local directory when the bucket is ``local``."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._cached_client: BaseClient | None = None

    @property
    def bucket(self) -> str:
        return self.settings.aws_s3_bucket

    @property
    def is_local(self) -> bool:
        return self.bucket.lower() == "local"

    def _local_root(self) -> Path:
        root = Path(self.settings.local_storage_path)
        root.mkdir(parents=True, exist_ok=True)
        return root

    def _client(self) -> BaseClient:
        if self._cached_client is not None:
            return self._cached_client

        settings = self.settings
        client_kwargs: dict[str, object] = {
            "config": Config(
                signature_version="s3v4",
                s3={"addressing_style": "virtual"},
            ),
        }
        client_kwargs["region_name"] = (
            settings.aws_region
            or _resolve_bucket_region(
                self.bucket,
                settings.aws_region,
                settings.aws_access_key_id,
                settings.aws_secret_access_key,
            )
            or "us-east-1"
        )
        if settings.aws_access_key_id and settings.aws_secret_access_key:
            client_kwargs["aws_access_key_id"] = settings.aws_access_key_id
            client_kwargs["aws_secret_access_key"] = settings.aws_secret_access_key

        self._cached_client = boto3.client("s3", **client_kwargs)
        return self._cached_client

    def put(self, key: str, data: bytes, content_type: str | None = None) -> str:
        """Upload ``data`` under ``key`` and return the key."""

        object_key = sanitize_object_key(key)
        resolved_content_type = content_type or "application/octet-stream"

        if self.is_local:
            destination = self._local_root() / object_key
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(data)
            LOGGER.info("stored_local", key=object_key, path=str(destination))
            return object_key

        try:
            self._client().upload_fileobj(
                Fileobj=BytesIO(data),
                Bucket=self.bucket,
                Key=object_key,
                ExtraArgs={"ContentType": resolved_content_type},
            )
        except (BotoCoreError, ClientError) as exc:
            LOGGER.error("s3_upload_failed", key=object_key, error=str(exc))
            raise
        LOGGER.info("uploaded_s3", bucket=self.bucket, key=object_key, size=len(data))
        return object_key

    def presigned_url(self, key: str, expires_in: int = 3600) -> str:
        """Return a time-limited GET URL for ``key``."""

        sanitized_key = sanitize_object_key(key)

        if self.is_local:
            return (self._local_root() / sanitized_key).resolve().as_uri()

        client = self._client()
        LOGGER.info(
            "presign_requested",
            bucket=self.bucket,
            region=client.meta.region_name,
            key=sanitized_key,
            expires_in=expires_in,
        )
        return client.generate_presigned_url(
            "get_object",
            Params={"Bucket": self.bucket, "Key": sanitized_key},
            ExpiresIn=expires_in,
        )


__all__ = [
    "MIME_EXTENSIONS",
    "S3Storage",
    "build_original_key",
    "build_processed_key",
    "file_extension_for",
    "sanitize_object_key",
]
