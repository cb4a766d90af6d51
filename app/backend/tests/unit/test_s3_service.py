from types import SimpleNamespace
from unittest.mock import Mock

import pytest
from botocore.exceptions import ClientError

from app.backend.src.services import s3


def _settings(**overrides: object) -> SimpleNamespace:
    values = {
        "aws_region": "us-east-1",
        "aws_s3_bucket": "invoice-intelligence-files",
        "aws_access_key_id": "test",
        "aws_secret_access_key": "secret",
        "local_storage_path": "/tmp/invoice-intelligence",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_generate_presigned_url_uses_sigv4(monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, object] = {}
    mock_client = Mock()
    mock_client.generate_presigned_url.return_value = "https://example.com/presigned"
    mock_client.meta.region_name = "us-east-1"

    def fake_boto3_client(service_name: str, **kwargs: object) -> Mock:
        captured["service"] = service_name
        captured.update(kwargs)
        return mock_client

    monkeypatch.setattr(s3.boto3, "client", fake_boto3_client)
    storage = s3.S3Storage(_settings())

    url = storage.presigned_url("/shops/shop1/invoices/7/original.pdf", expires_in=600)

    assert url == "https://example.com/presigned"
    assert captured["service"] == "s3"
    assert captured["region_name"] == "us-east-1"
    assert captured["aws_access_key_id"] == "test"
    assert getattr(captured["config"], "signature_version", None) == "s3v4"
    mock_client.generate_presigned_url.assert_called_once_with(
        "get_object",
        Params={"Bucket": "invoice-intelligence-files", "Key": "shops/shop1/invoices/7/original.pdf"},
        ExpiresIn=600,
    )


def test_put_uploads_with_content_type(monkeypatch: pytest.MonkeyPatch) -> None:
    mock_client = Mock()
    monkeypatch.setattr(s3.boto3, "client", lambda service_name, **kwargs: mock_client)
    storage = s3.S3Storage(_settings())

    key = storage.put("shops/shop1/invoices/7/processed.json", b"{}", "application/json")

    assert key == "shops/shop1/invoices/7/processed.json"
    kwargs = mock_client.upload_fileobj.call_args.kwargs
    assert kwargs["Bucket"] == "invoice-intelligence-files"
    assert kwargs["ExtraArgs"] == {"ContentType": "application/json"}
    assert kwargs["Fileobj"].read() == b"{}"


def test_put_reraises_client_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    mock_client = Mock()
    mock_client.upload_fileobj.side_effect = ClientError(
        {"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject"
    )
    monkeypatch.setattr(s3.boto3, "client", lambda service_name, **kwargs: mock_client)
    storage = s3.S3Storage(_settings())

    with pytest.raises(ClientError):
        storage.put("shops/shop1/invoices/7/original.pdf", b"%PDF", "application/pdf")


def test_local_bucket_writes_under_storage_path(tmp_path) -> None:
    storage = s3.S3Storage(_settings(aws_s3_bucket="local", local_storage_path=str(tmp_path)))

    key = storage.put("shops/shop1/invoices/7/original.pdf", b"%PDF-1.4")
    url = storage.presigned_url(key)

    stored = tmp_path / "shops" / "shop1" / "invoices" / "7" / "original.pdf"
    assert stored.read_bytes() == b"%PDF-1.4"
    assert url == stored.resolve().as_uri()


def test_object_keys_follow_shop_layout() -> None:
    assert s3.build_original_key("shop1", 42, "pdf") == "shops/shop1/invoices/42/original.pdf"
    assert s3.build_processed_key("shop1", 42) == "shops/shop1/invoices/42/processed.json"


@pytest.mark.parametrize(
    ("mime_type", "content", "expected"),
    [
        ("application/pdf", None, "pdf"),
        ("IMAGE/JPEG", None, "jpg"),
        ("application/octet-stream", b"%PDF-1.7", "pdf"),
        (None, b"PK\x03\x04rest", "xlsx"),
        ("application/octet-stream", b"plain text", "bin"),
    ],
)
def test_file_extension_for(mime_type, content, expected) -> None:
    assert s3.file_extension_for(mime_type, content) == expected


def test_sanitize_object_key_normalizes_slashes_and_quotes() -> None:
    assert s3.sanitize_object_key('"/shops//shop1/invoices/7/original%20copy.pdf"') == (
        "shops/shop1/invoices/7/original copy.pdf"
    )
