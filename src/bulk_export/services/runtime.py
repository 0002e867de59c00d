"""Wiring of the export engine's collaborators from settings.

The API process, the CLI, and tests all build the same object graph:
one repository, one storage backend, one exporter registry, and an
optional wake signal shared by the admission path and the workers.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from bulk_export.core.background import InProcessWakeSignal, WakeSignal
from bulk_export.core.config import Settings
from bulk_export.lib.exporter import ExporterRegistry
from bulk_export.lib.storage import FileStorage, LocalFileStorage, S3FileStorage, create_s3_client
from bulk_export.services.admission_service import AdmissionGuard
from bulk_export.services.export_reaper import ExportReaper
from bulk_export.services.export_repository import ExportJobRepository
from bulk_export.services.export_service import ExportService
from bulk_export.services.export_worker import ExportWorker


def build_storage(settings: Settings) -> FileStorage:
    """Create the configured artifact storage backend.

    Raises:
        ValueError: If the S3 backend is selected without a bucket.
    """
    if settings.export_storage_backend == "s3":
        if not settings.s3_bucket:
            msg = "S3_BUCKET is required when EXPORT_STORAGE_BACKEND=s3"
            raise ValueError(msg)
        client = create_s3_client(
            endpoint_url=settings.s3_endpoint_url,
            region_name=settings.s3_region,
            access_key_id=settings.s3_access_key_id,
            secret_access_key=settings.s3_secret_access_key,
        )
        return S3FileStorage(client, settings.s3_bucket, settings.s3_prefix)
    base_url = settings.export_public_base_url.rstrip("/")
    return LocalFileStorage(
        settings.export_dir,
        download_base_url=f"{base_url}{settings.api_v1_prefix}/exports/download",
        signing_key=settings.jwt_secret_key,
        signing_algorithm=settings.jwt_algorithm,
    )


@dataclass
class ExportRuntime:
    """The export engine's shared collaborators."""

    settings: Settings
    repository: ExportJobRepository
    storage: FileStorage
    exporters: ExporterRegistry
    wake_signal: WakeSignal | None = None

    def admission_guard(self) -> AdmissionGuard:
        return AdmissionGuard(self.repository, self.settings, self.exporters, self.wake_signal)

    def export_service(self) -> ExportService:
        return ExportService(
            self.repository,
            self.storage,
            self.settings,
            admission=self.admission_guard(),
            wake_signal=self.wake_signal,
        )

    def worker(self, worker_id: str | None = None) -> ExportWorker:
        return ExportWorker(
            self.repository,
            self.exporters,
            self.storage,
            self.settings,
            wake_signal=self.wake_signal,
            worker_id=worker_id,
        )

    def reaper(self) -> ExportReaper:
        return ExportReaper(self.repository, self.storage, self.settings)


def build_runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    *,
    exporters: ExporterRegistry | None = None,
    storage: FileStorage | None = None,
    wake_signal: WakeSignal | None = None,
) -> ExportRuntime:
    """Assemble an ExportRuntime from settings.

    Args:
        settings: Application settings.
        session_factory: Async session factory for the repository.
        exporters: Registry override; loaded from settings when omitted.
        storage: Storage override; built from settings when omitted.
        wake_signal: Wake signal; an in-process one is created when omitted.

    Returns:
        The assembled runtime.
    """
    return ExportRuntime(
        settings=settings,
        repository=ExportJobRepository(session_factory, retention=settings.export_retention),
        storage=storage if storage is not None else build_storage(settings),
        exporters=(
            exporters
            if exporters is not None
            else ExporterRegistry.from_import_paths(settings.export_resource_exporter_map)
        ),
        wake_signal=wake_signal if wake_signal is not None else InProcessWakeSignal(),
    )


_runtime: ExportRuntime | None = None


def set_runtime(runtime: ExportRuntime | None) -> None:
    """Install (or clear) the process-wide runtime used by the API."""
    global _runtime  # noqa: PLW0603
    _runtime = runtime


def get_runtime() -> ExportRuntime:
    """Return the process-wide runtime.

    Raises:
        RuntimeError: If no runtime has been installed.
    """
    if _runtime is None:
        msg = "Export runtime not initialized. Call set_runtime() first."
        raise RuntimeError(msg)
    return _runtime


@asynccontextmanager
async def open_runtime(settings: Settings) -> AsyncIterator[ExportRuntime]:
    """Initialize the database engine and yield a runtime; dispose on exit.

    Used by CLI commands that run outside the API lifespan.
    """
    from bulk_export.core.database import dispose_engine, get_session_factory, init_engine

    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        yield build_runtime(settings, get_session_factory())
    finally:
        await dispose_engine()
