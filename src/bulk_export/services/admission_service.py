"""Admission and deduplication guard for new export requests.

Decides whether a new request is admitted as a fresh PENDING job,
answered with an existing completed export, or refused by quota.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from loguru import logger

from bulk_export.core.background import WakeSignal
from bulk_export.core.config import Settings
from bulk_export.lib.export_lifecycle import (
    AdmissionDenialReason,
    AdmissionDeniedError,
    ExportFormat,
    ExportId,
    InvalidExportRequestError,
    normalize_filters,
    validate_filters,
)
from bulk_export.lib.exporter import ExporterRegistry
from bulk_export.models.base import utcnow
from bulk_export.models.export_job import ExportJob
from bulk_export.services.export_repository import ExportJobRepository


@dataclass(frozen=True)
class AdmissionResult:
    """Outcome of an admitted request.

    ``deduplicated`` is True when an existing completed export was reused
    and no new job was created.
    """

    export_id: ExportId
    deduplicated: bool = False


class AdmissionGuard:
    """Applies validation, quotas, and deduplication to export requests.

    Args:
        repository: Export job repository.
        settings: Quota and window configuration.
        exporters: When given, resource types must be registered here.
        wake_signal: Notified after a new job is persisted.
    """

    def __init__(
        self,
        repository: ExportJobRepository,
        settings: Settings,
        exporters: ExporterRegistry | None = None,
        wake_signal: WakeSignal | None = None,
    ) -> None:
        self._repository = repository
        self._settings = settings
        self._exporters = exporters
        self._wake_signal = wake_signal

    def validate(self, resource_type: str, filters: Mapping[str, Any] | None) -> None:
        """Reject malformed requests before touching quotas.

        Raises:
            InvalidExportRequestError: On an empty or unknown resource type
                or oversized filters.
        """
        if not resource_type or not resource_type.strip():
            msg = "Resource type is required"
            raise InvalidExportRequestError(msg)
        if self._exporters is not None:
            self._exporters.get(resource_type)
        validate_filters(filters)

    async def admit(
        self,
        *,
        requester_id: int,
        organization_id: int | None,
        resource_type: str,
        filters: Mapping[str, Any] | None,
        export_format: ExportFormat | str,
        now: datetime | None = None,
    ) -> AdmissionResult:
        """Admit, deduplicate, or refuse an export request.

        Args:
            requester_id: Requesting user.
            organization_id: Requester's organization, if any.
            resource_type: Resource type tag.
            filters: Opaque filter map.
            export_format: Requested output format.
            now: Evaluation time.

        Returns:
            The new or reused export id.

        Raises:
            InvalidExportRequestError: If the request is malformed.
            AdmissionDeniedError: If a quota is exhausted.
        """
        now = now or utcnow()
        try:
            fmt = ExportFormat(export_format)
        except ValueError:
            msg = f"Unsupported format: {export_format}"
            raise InvalidExportRequestError(msg) from None
        self.validate(resource_type, filters)
        normalized = normalize_filters(filters)

        active = await self._repository.get_active_jobs_count(requester_id=requester_id)
        if active >= self._settings.export_max_active_per_user:
            logger.info(f"Export request denied for requester {requester_id}: {active} active exports")
            raise AdmissionDeniedError(
                AdmissionDenialReason.TOO_MANY_ACTIVE,
                "You have too many pending exports. Please wait for them to complete.",
            )
        if organization_id is not None:
            org_active = await self._repository.get_active_jobs_count(organization_id=organization_id)
            if org_active >= self._settings.export_max_active_per_org:
                logger.info(f"Export request denied for organization {organization_id}: {org_active} active exports")
                raise AdmissionDeniedError(
                    AdmissionDenialReason.TOO_MANY_ACTIVE,
                    "Your organization has too many exports in progress. Please try again later.",
                )

        today = await self._repository.count_today_by_user(requester_id, now)
        if today >= self._settings.export_daily_quota_per_user:
            logger.info(f"Export request denied for requester {requester_id}: daily quota reached ({today})")
            raise AdmissionDeniedError(
                AdmissionDenialReason.DAILY_QUOTA_EXCEEDED,
                "Daily export limit reached. Please try again tomorrow.",
            )

        similar = await self._repository.find_similar_recent_export(
            requester_id,
            resource_type,
            normalized,
            since=now - self._settings.export_dedup_window,
            export_format=fmt,
        )
        if similar is not None and similar.expires_at is not None and now < similar.expires_at:
            logger.info(f"Reusing recent export {similar.id} for requester {requester_id}")
            return AdmissionResult(export_id=similar.export_id, deduplicated=True)

        job = ExportJob.create(
            requester_id=requester_id,
            organization_id=organization_id,
            resource_type=resource_type,
            filters=normalized,
            export_format=fmt,
            now=now,
        )
        await self._repository.store(job)
        logger.info(f"Queued export {job.id} ({resource_type}, {fmt}) for requester {requester_id}")
        if self._wake_signal is not None:
            self._wake_signal.notify()
        return AdmissionResult(export_id=job.export_id)
