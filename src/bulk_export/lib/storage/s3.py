"""S3-compatible object storage implementation of FileStorage.

Works with AWS S3, Cloudflare R2, and MinIO. boto3 is synchronous, so
calls run in a worker thread to keep the event loop responsive.
"""

import asyncio
from datetime import timedelta
from pathlib import Path
from typing import Any

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config
from botocore.exceptions import ClientError
from loguru import logger

from bulk_export.lib.storage.base import StoredFile

_MULTIPART_THRESHOLD = 25 * 1024 * 1024
_MULTIPART_CHUNKSIZE = 25 * 1024 * 1024


def create_s3_client(
    *,
    endpoint_url: str | None = None,
    region_name: str = "us-east-1",
    access_key_id: str | None = None,
    secret_access_key: str | None = None,
) -> Any:
    """Create a boto3 S3 client.

    Checksums are only computed when required, which S3-compatible stores
    such as R2 need with boto3 v1.36.0+.

    Args:
        endpoint_url: Custom endpoint for S3-compatible stores.
        region_name: Bucket region.
        access_key_id: Access key; falls back to the default credential chain.
        secret_access_key: Secret key; falls back to the default credential chain.

    Returns:
        Configured boto3 S3 client.
    """
    config = Config(
        request_checksum_calculation="when_required",
        response_checksum_validation="when_required",
    )
    return boto3.client(
        "s3",
        endpoint_url=endpoint_url,
        aws_access_key_id=access_key_id,
        aws_secret_access_key=secret_access_key,
        region_name=region_name,
        config=config,
    )


class S3FileStorage:
    """Stores artifacts as objects under ``prefix`` in one bucket.

    Args:
        client: boto3 S3 client.
        bucket: Bucket name.
        prefix: Key prefix for all artifacts.
    """

    def __init__(self, client: Any, bucket: str, prefix: str = "") -> None:
        self._client = client
        self._bucket = bucket
        self._prefix = prefix

    def _key(self, name: str) -> str:
        return f"{self._prefix}{name}"

    async def store(self, source: Path, name: str, *, content_type: str | None = None) -> StoredFile:
        key = self._key(Path(name).name)
        size = source.stat().st_size
        transfer_config = TransferConfig(
            multipart_threshold=_MULTIPART_THRESHOLD,
            multipart_chunksize=_MULTIPART_CHUNKSIZE,
            max_concurrency=4,
            use_threads=True,
        )
        extra_args = {"ContentType": content_type} if content_type else None
        logger.info(f"Uploading {source.name} ({size} bytes) to s3://{self._bucket}/{key}")
        await asyncio.to_thread(
            self._client.upload_file,
            str(source),
            self._bucket,
            key,
            Config=transfer_config,
            ExtraArgs=extra_args,
        )
        source.unlink(missing_ok=True)
        return StoredFile(path=key, size=size)

    async def exists(self, path: str) -> bool:
        try:
            await asyncio.to_thread(self._client.head_object, Bucket=self._bucket, Key=path)
        except ClientError as exc:
            if exc.response["Error"]["Code"] in ("NoSuchKey", "404", "NotFound"):
                return False
            raise
        return True

    async def delete(self, path: str) -> bool:
        existed = await self.exists(path)
        if existed:
            await asyncio.to_thread(self._client.delete_object, Bucket=self._bucket, Key=path)
            logger.debug(f"Deleted s3://{self._bucket}/{path}")
        return existed

    async def signed_download_url(self, path: str, ttl: timedelta) -> str:
        return await asyncio.to_thread(
            self._client.generate_presigned_url,
            "get_object",
            Params={"Bucket": self._bucket, "Key": path},
            ExpiresIn=int(ttl.total_seconds()),
        )
