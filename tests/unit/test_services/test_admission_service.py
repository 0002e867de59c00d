"""Tests for the admission and deduplication guard."""

from datetime import UTC, datetime, timedelta
from unittest.mock import MagicMock

import pytest

from bulk_export.core.config import Settings
from bulk_export.lib.export_lifecycle import (
    AdmissionDenialReason,
    AdmissionDeniedError,
    ExportStatus,
    InvalidExportRequestError,
    UnknownResourceTypeError,
)
from bulk_export.lib.exporter import ExporterRegistry
from bulk_export.models.base import utcnow
from bulk_export.models.export_job import ExportJob
from bulk_export.services.admission_service import AdmissionGuard
from bulk_export.services.export_repository import ExportJobRepository


@pytest.fixture
def guard(repository: ExportJobRepository, settings: Settings, exporters: ExporterRegistry) -> AdmissionGuard:
    return AdmissionGuard(repository, settings, exporters)


async def _admit(guard: AdmissionGuard, requester_id: int = 42, organization_id: int | None = 7, **kwargs):
    params = {
        "resource_type": "donations",
        "filters": {"campaign_id": 5},
        "export_format": "csv",
    }
    params.update(kwargs)
    return await guard.admit(requester_id=requester_id, organization_id=organization_id, **params)


async def _completed_job(repository: ExportJobRepository, filters: dict, *, completed_at: datetime) -> ExportJob:
    job = ExportJob.create(
        requester_id=42,
        organization_id=7,
        resource_type="donations",
        filters=filters,
        export_format="csv",
        now=completed_at,
    )
    job.start_processing(25, now=completed_at)
    job.complete("2026/01/done.csv", 512, repository.retention, now=completed_at)
    return await repository.store(job)


class TestValidation:
    def test_rejects_empty_resource_type(self, guard: AdmissionGuard) -> None:
        with pytest.raises(InvalidExportRequestError, match="Resource type is required"):
            guard.validate("  ", None)

    def test_rejects_unregistered_resource_type(self, guard: AdmissionGuard) -> None:
        with pytest.raises(UnknownResourceTypeError):
            guard.validate("spaceships", None)

    def test_rejects_oversized_filters(self, guard: AdmissionGuard) -> None:
        with pytest.raises(InvalidExportRequestError, match="Too many filters"):
            guard.validate("donations", {f"k{i}": i for i in range(21)})

    def test_skips_registry_check_without_registry(self, repository: ExportJobRepository, settings: Settings) -> None:
        AdmissionGuard(repository, settings).validate("anything", {"a": 1})

    @pytest.mark.asyncio
    async def test_rejects_unknown_format(self, guard: AdmissionGuard) -> None:
        with pytest.raises(InvalidExportRequestError, match="Unsupported format"):
            await _admit(guard, export_format="pdf")


class TestAdmit:
    @pytest.mark.asyncio
    async def test_creates_pending_job_and_wakes_workers(
        self, repository: ExportJobRepository, settings: Settings, exporters: ExporterRegistry
    ) -> None:
        wake = MagicMock()
        guard = AdmissionGuard(repository, settings, exporters, wake_signal=wake)

        result = await _admit(guard)

        assert not result.deduplicated
        job = await repository.find_by_export_id(result.export_id)
        assert job.export_status is ExportStatus.PENDING
        assert job.requester_id == 42
        assert job.organization_id == 7
        assert job.current_percentage == 0
        wake.notify.assert_called_once()

    @pytest.mark.asyncio
    async def test_too_many_active_per_user(self, guard: AdmissionGuard, repository: ExportJobRepository) -> None:
        for campaign in range(3):
            await _admit(guard, filters={"campaign_id": campaign})

        with pytest.raises(AdmissionDeniedError) as exc_info:
            await _admit(guard, filters={"campaign_id": 99})

        assert exc_info.value.reason is AdmissionDenialReason.TOO_MANY_ACTIVE
        assert "too many pending exports" in exc_info.value.detail
        assert await repository.get_active_jobs_count(requester_id=42) == 3

    @pytest.mark.asyncio
    async def test_too_many_active_per_organization(
        self, repository: ExportJobRepository, settings: Settings, exporters: ExporterRegistry
    ) -> None:
        guard = AdmissionGuard(repository, settings.model_copy(update={"export_max_active_per_org": 2}), exporters)
        await _admit(guard, requester_id=1)
        await _admit(guard, requester_id=2)

        with pytest.raises(AdmissionDeniedError, match="organization") as exc_info:
            await _admit(guard, requester_id=3)
        assert exc_info.value.reason is AdmissionDenialReason.TOO_MANY_ACTIVE

        # A requester outside the organization is unaffected.
        assert not (await _admit(guard, requester_id=4, organization_id=None)).deduplicated

    @pytest.mark.asyncio
    async def test_daily_quota(
        self, repository: ExportJobRepository, settings: Settings, exporters: ExporterRegistry
    ) -> None:
        guard = AdmissionGuard(
            repository,
            settings.model_copy(update={"export_daily_quota_per_user": 2, "export_max_active_per_user": 10}),
            exporters,
        )
        now = datetime(2026, 3, 3, 12, 0, tzinfo=UTC)
        await _admit(guard, filters={"campaign_id": 1}, now=now)
        await _admit(guard, filters={"campaign_id": 2}, now=now)

        with pytest.raises(AdmissionDeniedError) as exc_info:
            await _admit(guard, filters={"campaign_id": 3}, now=now)
        assert exc_info.value.reason is AdmissionDenialReason.DAILY_QUOTA_EXCEEDED

        tomorrow = now + timedelta(days=1)
        assert not (await _admit(guard, filters={"campaign_id": 3}, now=tomorrow)).deduplicated

    @pytest.mark.asyncio
    async def test_reuses_recent_identical_export(self, guard: AdmissionGuard, repository: ExportJobRepository) -> None:
        existing = await _completed_job(
            repository, {"campaign_id": 5, "year": 2024}, completed_at=utcnow() - timedelta(minutes=5)
        )

        result = await _admit(guard, filters={"year": 2024, "campaign_id": 5})

        assert result.deduplicated
        assert result.export_id == existing.export_id
        assert (await repository.paginate()).total == 1

    @pytest.mark.asyncio
    async def test_does_not_reuse_outside_window(self, guard: AdmissionGuard, repository: ExportJobRepository) -> None:
        await _completed_job(repository, {"campaign_id": 5}, completed_at=utcnow() - timedelta(minutes=30))

        result = await _admit(guard)

        assert not result.deduplicated
        assert (await repository.paginate()).total == 2

    @pytest.mark.asyncio
    async def test_does_not_reuse_other_format(self, guard: AdmissionGuard, repository: ExportJobRepository) -> None:
        await _completed_job(repository, {"campaign_id": 5}, completed_at=utcnow() - timedelta(minutes=1))

        result = await _admit(guard, export_format="json")

        assert not result.deduplicated
