"""ExportJob model: one requested bulk export and its lifecycle state.

The row doubles as the domain entity: state-machine methods validate a
transition against the current status and mutate the instance in memory.
Persisting a mutated instance safely under concurrency is the repository's
job (see ``ExportJobRepository.store_transition``).
"""

import math
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import JSON, BigInteger, CheckConstraint, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from bulk_export.lib.export_lifecycle import (
    ExportFormat,
    ExportId,
    ExportProgress,
    ExportStatus,
    InvalidProgressError,
    InvalidStateTransitionError,
    RetryLimitExceededError,
    filters_fingerprint,
    normalize_filters,
)
from bulk_export.models.base import Base, TimestampMixin, UTCDateTime, UUIDMixin, utcnow

_FILE_SIZE_UNITS = ("B", "KB", "MB", "GB")


class ExportJob(Base, UUIDMixin, TimestampMixin):
    """A bulk export request tracked from admission to expiry."""

    __tablename__ = "export_jobs"

    requester_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    organization_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_filters: Mapped[dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )
    filters_fingerprint: Mapped[str] = mapped_column(String(64), nullable=False)
    format: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=ExportStatus.PENDING.value,
        server_default=ExportStatus.PENDING.value,
    )
    file_path: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    file_size: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    total_records: Mapped[int | None] = mapped_column(Integer, nullable=True)
    processed_records: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_percentage: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    current_message: Mapped[str | None] = mapped_column(String(500), nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Identifies the worker claim that may write progress and results
    claim_token: Mapped[str | None] = mapped_column(String(36), nullable=True)

    __table_args__ = (
        CheckConstraint("current_percentage >= 0 AND current_percentage <= 100", name="ck_export_jobs_percentage"),
        Index("ix_export_jobs_status_created", "status", "created_at"),
        Index("ix_export_jobs_requester_status", "requester_id", "status"),
        Index("ix_export_jobs_org_status", "organization_id", "status"),
        Index("ix_export_jobs_dedup", "requester_id", "resource_type", "filters_fingerprint"),
        Index("ix_export_jobs_expires_at", "expires_at"),
    )

    @classmethod
    def create(
        cls,
        *,
        requester_id: int,
        organization_id: int | None,
        resource_type: str,
        filters: Mapping[str, Any] | None,
        export_format: ExportFormat | str,
        now: datetime | None = None,
    ) -> "ExportJob":
        """Build a new PENDING export job with zero progress."""
        now = now or utcnow()
        normalized = normalize_filters(filters)
        return cls(
            id=ExportId.generate().value,
            requester_id=requester_id,
            organization_id=organization_id,
            resource_type=resource_type,
            resource_filters=normalized,
            filters_fingerprint=filters_fingerprint(normalized),
            format=ExportFormat(export_format).value,
            status=ExportStatus.PENDING.value,
            total_records=None,
            processed_records=0,
            current_percentage=0,
            current_message="Export queued",
            retry_count=0,
            created_at=now,
            updated_at=now,
        )

    # -- value accessors -------------------------------------------------

    @property
    def export_id(self) -> ExportId:
        return ExportId(self.id)

    @property
    def export_status(self) -> ExportStatus:
        return ExportStatus(self.status)

    @property
    def export_format(self) -> ExportFormat:
        return ExportFormat(self.format)

    @property
    def progress(self) -> ExportProgress:
        return ExportProgress(
            total_records=self.total_records or 0,
            processed_records=self.processed_records or 0,
            percentage=self.current_percentage or 0,
            message=self.current_message,
        )

    # -- state machine ---------------------------------------------------

    def _require(self, attempted: str, target: ExportStatus) -> None:
        current = self.export_status
        if not current.can_transition_to(target):
            raise InvalidStateTransitionError(current, attempted)

    def start_processing(self, total_records: int = 0, *, now: datetime | None = None) -> None:
        """PENDING -> PROCESSING."""
        self._require("start", ExportStatus.PROCESSING)
        if total_records < 0:
            msg = "total_records must not be negative"
            raise InvalidProgressError(msg)
        self.status = ExportStatus.PROCESSING.value
        self.started_at = now or utcnow()
        self.total_records = total_records
        self.processed_records = 0
        self.current_percentage = 0
        self.current_message = "Starting export processing..."

    def update_progress(
        self,
        processed_records: int,
        percentage: int,
        message: str | None = None,
        *,
        total_records: int | None = None,
    ) -> None:
        """Record progress while PROCESSING.

        Args:
            processed_records: Records written so far.
            percentage: Completion percentage; never decreases.
            message: Optional human-readable status line.
            total_records: Revised record estimate, if the exporter learned more.

        Raises:
            InvalidStateTransitionError: If the job is not PROCESSING.
            InvalidProgressError: If the update violates progress invariants.
        """
        if self.export_status is not ExportStatus.PROCESSING:
            raise InvalidStateTransitionError(self.export_status, "update progress of")
        if not 0 <= percentage <= 100:
            msg = f"Percentage must be within 0..100, got {percentage}"
            raise InvalidProgressError(msg)
        if percentage < (self.current_percentage or 0):
            msg = f"Percentage cannot decrease ({self.current_percentage} -> {percentage})"
            raise InvalidProgressError(msg)
        if processed_records < 0:
            msg = "processed_records must not be negative"
            raise InvalidProgressError(msg)
        total = total_records if total_records is not None else self.total_records
        if total and processed_records > total:
            msg = f"processed_records ({processed_records}) exceeds total_records ({total})"
            raise InvalidProgressError(msg)
        if total_records is not None:
            self.total_records = total_records
        self.processed_records = processed_records
        self.current_percentage = percentage
        if message is not None:
            self.current_message = message

    def complete(
        self,
        file_path: str,
        file_size: int,
        retention: timedelta,
        *,
        now: datetime | None = None,
    ) -> None:
        """PROCESSING -> COMPLETED, starting the retention window."""
        self._require("complete", ExportStatus.COMPLETED)
        if retention <= timedelta(0):
            msg = "retention must be positive"
            raise ValueError(msg)
        completed_at = now or utcnow()
        self.status = ExportStatus.COMPLETED.value
        self.completed_at = completed_at
        self.expires_at = completed_at + retention
        self.file_path = file_path
        self.file_size = file_size
        self.current_percentage = 100
        self.current_message = "Export completed successfully"

    def fail(self, error_message: str, *, now: datetime | None = None) -> None:
        """PENDING | PROCESSING -> FAILED."""
        self._require("fail", ExportStatus.FAILED)
        self._finish(ExportStatus.FAILED, now or utcnow())
        self.error_message = error_message
        self.current_message = f"Export failed: {error_message}"

    def cancel(self, reason: str = "Cancelled by user", *, now: datetime | None = None) -> None:
        """PENDING | PROCESSING -> CANCELLED."""
        self._require("cancel", ExportStatus.CANCELLED)
        self._finish(ExportStatus.CANCELLED, now or utcnow())
        self.error_message = reason
        self.current_message = f"Export cancelled: {reason}"

    def _finish(self, status: ExportStatus, now: datetime) -> None:
        if self.started_at is None:
            self.started_at = now
        self.status = status.value
        self.completed_at = now

    def retry(self, max_retries: int = 3) -> None:
        """FAILED -> PENDING, bounded by ``max_retries``.

        Raises:
            InvalidStateTransitionError: If the job is not FAILED.
            RetryLimitExceededError: If the job was already retried
                ``max_retries`` times. The job is left untouched.
        """
        self._require("retry", ExportStatus.PENDING)
        if self.retry_count >= max_retries:
            raise RetryLimitExceededError(self.retry_count, max_retries)
        self.status = ExportStatus.PENDING.value
        self.started_at = None
        self.completed_at = None
        self.expires_at = None
        self.error_message = None
        self.file_path = None
        self.file_size = None
        self.total_records = None
        self.processed_records = 0
        self.current_percentage = 0
        self.claim_token = None
        self.current_message = "Export queued for retry"
        self.retry_count += 1

    # -- read-side helpers -----------------------------------------------

    def is_expired(self, now: datetime | None = None) -> bool:
        return self.expires_at is not None and self.expires_at <= (now or utcnow())

    def can_be_downloaded(self, now: datetime | None = None) -> bool:
        return self.export_status is ExportStatus.COMPLETED and self.file_path is not None and not self.is_expired(now)

    def expires_in_hours(self, now: datetime | None = None) -> int | None:
        if self.expires_at is None:
            return None
        remaining = (self.expires_at - (now or utcnow())).total_seconds() / 3600
        return max(0, int(remaining))

    @property
    def file_size_formatted(self) -> str:
        if self.file_size is None:
            return "N/A"
        size = float(self.file_size)
        unit = 0
        while size >= 1024 and unit < len(_FILE_SIZE_UNITS) - 1:
            size /= 1024
            unit += 1
        return f"{round(size, 2):g} {_FILE_SIZE_UNITS[unit]}"

    def estimated_time_remaining(self, now: datetime | None = None) -> str | None:
        """Linear extrapolation of the remaining time from elapsed time and percentage."""
        if self.export_status is not ExportStatus.PROCESSING or self.started_at is None:
            return None
        if not self.current_percentage:
            return None
        elapsed_minutes = ((now or utcnow()) - self.started_at).total_seconds() / 60
        remaining = elapsed_minutes / self.current_percentage * 100 - elapsed_minutes
        if remaining <= 0:
            return "Almost done"
        if remaining < 60:
            return f"{math.ceil(remaining)} minutes"
        return f"{round(remaining / 60, 1)} hours"

    def __repr__(self) -> str:
        return f"<ExportJob {self.id} {self.resource_type} {self.status}>"
