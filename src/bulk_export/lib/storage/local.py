"""Local filesystem implementation of FileStorage.

Artifacts are stored under ``base_dir/{year}/{month}/{name}``. Download
links point at the API's download endpoint and carry a signed JWT that
names the artifact path and expires after the requested TTL.
"""

import asyncio
import shutil
from datetime import UTC, datetime, timedelta
from pathlib import Path

import aiofiles.os

from bulk_export.core.security import create_download_token
from bulk_export.lib.storage.base import StoredFile


class LocalFileStorage:
    """Stores artifacts on the local filesystem.

    Args:
        base_dir: Root directory for artifacts.
        download_base_url: Absolute URL of the download endpoint, without
            the trailing token (e.g. ``https://host/api/v1/exports/download``).
        signing_key: Secret used to sign download tokens.
        signing_algorithm: JWT algorithm for download tokens.
    """

    def __init__(
        self,
        base_dir: str | Path,
        *,
        download_base_url: str,
        signing_key: str,
        signing_algorithm: str = "HS256",
    ) -> None:
        self._base_dir = Path(base_dir)
        self._download_base_url = download_base_url.rstrip("/")
        self._signing_key = signing_key
        self._signing_algorithm = signing_algorithm

    @property
    def base_dir(self) -> Path:
        return self._base_dir

    def resolve(self, path: str) -> Path:
        """Resolve a stored relative path to an absolute path inside ``base_dir``.

        Raises:
            ValueError: If the path escapes the storage root.
        """
        root = self._base_dir.resolve()
        full_path = (root / path).resolve()
        if not full_path.is_relative_to(root):
            msg = f"Path escapes storage root: {path}"
            raise ValueError(msg)
        return full_path

    async def store(self, source: Path, name: str, *, content_type: str | None = None) -> StoredFile:
        now = datetime.now(tz=UTC)
        relative_path = f"{now.year}/{now.month:02d}/{Path(name).name}"
        target = self.resolve(relative_path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)
        try:
            await aiofiles.os.replace(source, target)
        except OSError:
            # Cross-device temp directory: fall back to a copying move
            await asyncio.to_thread(shutil.move, str(source), str(target))
        stat = await aiofiles.os.stat(target)
        return StoredFile(path=relative_path, size=stat.st_size)

    async def delete(self, path: str) -> bool:
        full_path = self.resolve(path)
        if not await aiofiles.os.path.exists(full_path):
            return False
        await aiofiles.os.remove(full_path)
        return True

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(self.resolve(path))

    async def signed_download_url(self, path: str, ttl: timedelta) -> str:
        token = create_download_token(path, self._signing_key, ttl, self._signing_algorithm)
        return f"{self._download_base_url}/{token}"

