"""Tests for S3-compatible artifact storage using a moto-mocked bucket."""

from datetime import timedelta
from pathlib import Path
from urllib.parse import parse_qs, urlparse

import boto3
import pytest
from moto import mock_aws

from bulk_export.lib.storage import S3FileStorage, create_s3_client

_BUCKET = "test-exports"


@pytest.fixture
def s3_client():
    """Create a moto-mocked S3 client and bucket."""
    with mock_aws():
        client = boto3.client("s3", region_name="us-east-1")
        client.create_bucket(Bucket=_BUCKET)
        yield client


@pytest.fixture
def s3_storage(s3_client) -> S3FileStorage:
    return S3FileStorage(s3_client, _BUCKET, prefix="exports/")


class TestCreateS3Client:
    def test_returns_configured_client(self) -> None:
        client = create_s3_client(access_key_id="test-key", secret_access_key="test-secret")
        assert hasattr(client, "upload_file")
        assert client.meta.region_name == "us-east-1"


class TestS3FileStorage:
    @pytest.mark.asyncio
    async def test_store_uploads_and_consumes_source(self, s3_storage: S3FileStorage, s3_client, tmp_path: Path) -> None:
        source = tmp_path / "work.json"
        source.write_text("[]")

        stored = await s3_storage.store(source, "export_donations_1.json", content_type="application/json")

        assert stored.path == "exports/export_donations_1.json"
        assert stored.size == 2
        assert not source.exists()
        obj = s3_client.get_object(Bucket=_BUCKET, Key=stored.path)
        assert obj["ContentType"] == "application/json"
        assert obj["Body"].read() == b"[]"

    @pytest.mark.asyncio
    async def test_exists_and_delete(self, s3_storage: S3FileStorage, tmp_path: Path) -> None:
        source = tmp_path / "work.csv"
        source.write_text("id\n")
        stored = await s3_storage.store(source, "a.csv")

        assert await s3_storage.exists(stored.path)
        assert await s3_storage.delete(stored.path)
        assert not await s3_storage.exists(stored.path)
        assert not await s3_storage.delete(stored.path)

    @pytest.mark.asyncio
    async def test_signed_download_url(self, s3_storage: S3FileStorage) -> None:
        url = await s3_storage.signed_download_url("exports/a.csv", timedelta(minutes=10))

        parsed = urlparse(url)
        assert parsed.path.endswith("/exports/a.csv")
        query = parse_qs(parsed.query)
        assert query.get("X-Amz-Expires") == ["600"] or query.get("Expires") is not None
