"""Artifact storage library: protocol plus local and S3 backends."""

from bulk_export.lib.storage.base import FileStorage, StoredFile
from bulk_export.lib.storage.local import LocalFileStorage
from bulk_export.lib.storage.s3 import S3FileStorage, create_s3_client

__all__ = [
    "FileStorage",
    "LocalFileStorage",
    "S3FileStorage",
    "StoredFile",
    "create_s3_client",
]
