"""Shared test fixtures for settings, a file-backed async database, and the export runtime."""

from collections.abc import AsyncGenerator
from datetime import timedelta
from pathlib import Path

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from bulk_export.core.config import Settings
from bulk_export.core.security import Requester, create_access_token
from bulk_export.lib.exporter import ExporterRegistry, IterableExporter
from bulk_export.lib.storage import LocalFileStorage
from bulk_export.models.base import Base
from bulk_export.services.export_repository import ExportJobRepository
from bulk_export.services.runtime import ExportRuntime, build_runtime

TEST_SECRET = "test-secret-key-not-for-production"

DONATIONS = [
    {"id": i, "donor": f"Donor {i}", "amount": i * 10, "campaign_id": 5 if i % 2 else 7} for i in range(1, 26)
]


def donation_records(filters: dict) -> list[dict]:
    """Donations matching an optional ``campaign_id`` filter."""
    campaign_id = filters.get("campaign_id")
    return [d for d in DONATIONS if campaign_id is None or d["campaign_id"] == campaign_id]


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    """Test application settings backed by a per-test SQLite file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        jwt_secret_key=TEST_SECRET,
        jwt_algorithm="HS256",
        export_dir=str(tmp_path / "exports"),
        export_public_base_url="http://test",
        export_batch_size=10,
        export_progress_min_interval_seconds=0,
        export_progress_min_step=1,
    )


@pytest.fixture
async def async_engine(settings: Settings) -> AsyncGenerator[AsyncEngine]:
    """Create a file-backed async SQLite engine so concurrent sessions see each other's writes."""
    engine = create_async_engine(settings.database_url, echo=False, connect_args={"timeout": 30})

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
def repository(session_factory: async_sessionmaker[AsyncSession]) -> ExportJobRepository:
    return ExportJobRepository(session_factory, retention=timedelta(hours=72))


@pytest.fixture
def storage(settings: Settings) -> LocalFileStorage:
    return LocalFileStorage(
        settings.export_dir,
        download_base_url="http://test/api/v1/exports/download",
        signing_key=settings.jwt_secret_key,
    )


@pytest.fixture
def exporters() -> ExporterRegistry:
    registry = ExporterRegistry()
    registry.register("donations", IterableExporter(donation_records, columns=["id", "donor", "amount"]))
    return registry


@pytest.fixture
def runtime(
    settings: Settings,
    session_factory: async_sessionmaker[AsyncSession],
    exporters: ExporterRegistry,
    storage: LocalFileStorage,
) -> ExportRuntime:
    return build_runtime(settings, session_factory, exporters=exporters, storage=storage)


@pytest.fixture
def requester() -> Requester:
    return Requester(requester_id=42, organization_id=7)


@pytest.fixture
def other_requester() -> Requester:
    return Requester(requester_id=99, organization_id=7)


@pytest.fixture
def requester_token(settings: Settings, requester: Requester) -> str:
    """Generate a JWT access token for the default requester."""
    return create_access_token(
        requester.requester_id,
        requester.organization_id,
        secret_key=settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )
