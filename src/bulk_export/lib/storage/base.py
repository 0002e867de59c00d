"""File storage protocol for export artifacts."""

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Protocol


@dataclass(frozen=True)
class StoredFile:
    """Location and size of a stored artifact."""

    path: str
    size: int


class FileStorage(Protocol):
    """Durable home for finished export artifacts.

    Workers write artifacts to a local temporary file first and hand the
    finished file to ``store``. Paths returned by ``store`` are opaque to
    the engine and are what gets persisted on the job.
    """

    async def store(self, source: Path, name: str, *, content_type: str | None = None) -> StoredFile:
        """Move a finished local file into storage.

        Args:
            source: Local temporary file; consumed by the call.
            name: Desired artifact file name.
            content_type: MIME type hint.

        Returns:
            The stored path and size in bytes.
        """
        ...

    async def delete(self, path: str) -> bool:
        """Delete an artifact. Deleting a missing artifact is not an error.

        Returns:
            True if something was deleted, False if it was already gone.
        """
        ...

    async def exists(self, path: str) -> bool:
        """Return True if the artifact exists."""
        ...

    async def signed_download_url(self, path: str, ttl: timedelta) -> str:
        """Return a URL granting time-limited download access to ``path``."""
        ...
