"""Export service: requester-facing operations on export jobs.

Wraps admission, status reads, and the requester-side transitions
(cancel, retry, delete). Jobs owned by someone else are reported as not
found so existence is never leaked.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Literal

from loguru import logger

from bulk_export.core.background import WakeSignal
from bulk_export.core.config import Settings
from bulk_export.core.security import Requester
from bulk_export.lib.export_lifecycle import (
    TERMINAL_STATUSES,
    ExportFormat,
    ExportId,
    ExportNotFoundError,
    ExportProgress,
    ExportStatus,
    InvalidStateTransitionError,
)
from bulk_export.lib.storage import FileStorage
from bulk_export.models.base import utcnow
from bulk_export.models.export_job import ExportJob
from bulk_export.services.admission_service import AdmissionGuard, AdmissionResult
from bulk_export.services.export_repository import ExportIdLike, ExportJobRepository, ExportListFilters, ExportPage

ListScope = Literal["user", "organization"]


@dataclass(frozen=True)
class ExportStatusView:
    """Requester-facing snapshot of an export job."""

    export_id: ExportId
    status: ExportStatus
    resource_type: str
    format: ExportFormat
    progress: ExportProgress
    created_at: datetime
    started_at: datetime | None
    completed_at: datetime | None
    expires_at: datetime | None
    expires_in_hours: int | None
    estimated_time_remaining: str | None
    error_message: str | None
    file_size: int | None
    file_size_formatted: str
    retry_count: int
    can_download: bool
    download_url: str | None = None


class ExportService:
    """Entry point for requester operations on exports.

    Args:
        repository: Export job repository.
        storage: Artifact storage, used for download links and deletes.
        settings: Application settings.
        admission: Admission guard; a default one is built when omitted.
        wake_signal: Notified when a retried job goes back to PENDING.
    """

    def __init__(
        self,
        repository: ExportJobRepository,
        storage: FileStorage,
        settings: Settings,
        admission: AdmissionGuard | None = None,
        wake_signal: WakeSignal | None = None,
    ) -> None:
        self._repository = repository
        self._storage = storage
        self._settings = settings
        self._admission = admission or AdmissionGuard(repository, settings, wake_signal=wake_signal)
        self._wake_signal = wake_signal

    async def _find_owned(self, export_id: ExportIdLike, requester: Requester) -> ExportJob:
        try:
            key = ExportId.coerce(export_id)
        except ValueError:
            raise ExportNotFoundError(export_id) from None
        job = await self._repository.find_by_export_id(key)
        if job is None or job.requester_id != requester.requester_id:
            raise ExportNotFoundError(export_id)
        return job

    async def _transition_conflict(self, export_id: ExportIdLike, attempted: str) -> InvalidStateTransitionError:
        current = await self._repository.find_by_export_id(export_id)
        if current is None:
            raise ExportNotFoundError(export_id)
        return InvalidStateTransitionError(current.export_status, attempted)

    async def request_export(
        self,
        requester: Requester,
        resource_type: str,
        filters: Mapping[str, Any] | None,
        export_format: ExportFormat | str,
    ) -> AdmissionResult:
        """Admit a new export request (or reuse a recent identical one).

        Raises:
            InvalidExportRequestError: If the request is malformed.
            AdmissionDeniedError: If a quota is exhausted.
        """
        return await self._admission.admit(
            requester_id=requester.requester_id,
            organization_id=requester.organization_id,
            resource_type=resource_type,
            filters=filters,
            export_format=export_format,
        )

    async def get_status(self, export_id: ExportIdLike, requester: Requester) -> ExportStatusView:
        """Return the current status of one of the requester's exports.

        A download URL is included only while the artifact is downloadable.

        Raises:
            ExportNotFoundError: If the export is unknown or not owned.
        """
        job = await self._find_owned(export_id, requester)
        now = utcnow()
        can_download = job.can_be_downloaded(now)
        download_url = None
        if can_download and job.file_path is not None:
            download_url = await self._storage.signed_download_url(
                job.file_path,
                timedelta(minutes=self._settings.export_download_url_ttl_minutes),
            )
        return ExportStatusView(
            export_id=job.export_id,
            status=job.export_status,
            resource_type=job.resource_type,
            format=job.export_format,
            progress=job.progress,
            created_at=job.created_at,
            started_at=job.started_at,
            completed_at=job.completed_at,
            expires_at=job.expires_at,
            expires_in_hours=job.expires_in_hours(now),
            estimated_time_remaining=job.estimated_time_remaining(now),
            error_message=job.error_message,
            file_size=job.file_size,
            file_size_formatted=job.file_size_formatted,
            retry_count=job.retry_count,
            can_download=can_download,
            download_url=download_url,
        )

    async def cancel_export(
        self,
        export_id: ExportIdLike,
        requester: Requester,
        reason: str = "Cancelled by user",
    ) -> ExportJob:
        """Cancel a PENDING or PROCESSING export.

        A worker processing the job notices at its next progress write.

        Raises:
            ExportNotFoundError: If the export is unknown or not owned.
            InvalidStateTransitionError: If the export already finished.
        """
        # A worker may claim a PENDING job between the read and the write;
        # the second pass re-reads and cancels the PROCESSING job instead.
        for _ in range(2):
            job = await self._find_owned(export_id, requester)
            expected = job.export_status
            job.cancel(reason)
            if await self._repository.store_transition(job, expected):
                break
        else:
            raise await self._transition_conflict(job.id, "cancel")
        logger.info(f"Export {job.id} cancelled by requester {requester.requester_id}")
        return job

    async def retry_export(self, export_id: ExportIdLike, requester: Requester) -> ExportJob:
        """Re-queue a FAILED export.

        Raises:
            ExportNotFoundError: If the export is unknown or not owned.
            InvalidStateTransitionError: If the export is not FAILED.
            RetryLimitExceededError: If the retry budget is spent.
        """
        job = await self._find_owned(export_id, requester)
        job.retry(self._settings.export_max_retries)
        if not await self._repository.store_transition(job, ExportStatus.FAILED):
            raise await self._transition_conflict(job.id, "retry")
        logger.info(f"Export {job.id} queued for retry ({job.retry_count}/{self._settings.export_max_retries})")
        if self._wake_signal is not None:
            self._wake_signal.notify()
        return job

    async def delete_export(self, export_id: ExportIdLike, requester: Requester) -> None:
        """Delete a finished export and its artifact.

        Raises:
            ExportNotFoundError: If the export is unknown or not owned.
            InvalidStateTransitionError: If the export is still PENDING or
                PROCESSING.
        """
        job = await self._find_owned(export_id, requester)
        if not job.export_status.is_terminal:
            raise InvalidStateTransitionError(job.export_status, "delete")
        if not await self._repository.delete_if_status(job.id, list(TERMINAL_STATUSES)):
            raise await self._transition_conflict(job.id, "delete")
        if job.file_path:
            await self._storage.delete(job.file_path)
        logger.info(f"Export {job.id} deleted by requester {requester.requester_id}")

    async def list_exports(
        self,
        requester: Requester,
        scope: ListScope = "user",
        filters: ExportListFilters | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> ExportPage:
        """List the requester's (or their organization's) exports.

        Raises:
            ValueError: On an unknown sort column, or organization scope
                without an organization.
        """
        if scope == "organization":
            if requester.organization_id is None:
                msg = "Organization scope requires an organization"
                raise ValueError(msg)
            return await self._repository.get_organization_exports_history(
                requester.organization_id, page, page_size, filters, sort_by, sort_order
            )
        return await self._repository.get_user_exports_history(
            requester.requester_id, page, page_size, filters, sort_by, sort_order
        )

    async def get_statistics(
        self,
        requester: Requester,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> dict[str, int]:
        """Per-status export counts for the requester's organization.

        Requesters without an organization see their own exports only.
        """
        if requester.organization_id is None:
            return await self._repository.get_statistics(
                date_from=date_from, date_to=date_to, requester_id=requester.requester_id
            )
        return await self._repository.get_statistics(requester.organization_id, date_from, date_to)
