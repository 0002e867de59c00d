"""Exception hierarchy for the export job lifecycle.

Admission and validation errors are raised synchronously to the requester.
Processing failures are never raised to the requester; they are recorded on
the job as a FAILED status with an error message.
"""

import enum

from bulk_export.lib.export_lifecycle.status import ExportStatus


class ExportError(Exception):
    """Base class for all export lifecycle errors."""


class ExportNotFoundError(ExportError):
    """The export does not exist or is not visible to the requester.

    Both cases raise the same error so job existence is not leaked.
    """

    def __init__(self, export_id: object) -> None:
        self.export_id = export_id
        super().__init__(f"Export job {export_id} not found")


class InvalidStateTransitionError(ExportError):
    """An operation is incompatible with the job's current status."""

    def __init__(self, from_status: ExportStatus, attempted: str) -> None:
        self.from_status = ExportStatus(from_status)
        self.attempted = attempted
        super().__init__(f"Cannot {attempted} an export in status '{self.from_status}'")


class RetryLimitExceededError(ExportError):
    """A FAILED job has already been retried the maximum number of times."""

    def __init__(self, retry_count: int, max_retries: int) -> None:
        self.retry_count = retry_count
        self.max_retries = max_retries
        super().__init__(f"Retry limit exceeded ({retry_count}/{max_retries})")


class AdmissionDenialReason(enum.StrEnum):
    """Why a new export request was refused."""

    TOO_MANY_ACTIVE = "too_many_active"
    DAILY_QUOTA_EXCEEDED = "daily_quota_exceeded"


class AdmissionDeniedError(ExportError):
    """A new export request was refused by quota enforcement."""

    def __init__(self, reason: AdmissionDenialReason, detail: str) -> None:
        self.reason = reason
        self.detail = detail
        super().__init__(detail)


class InvalidExportRequestError(ExportError):
    """The export request is malformed (unknown resource type, oversized filters)."""


class UnknownResourceTypeError(InvalidExportRequestError):
    """No exporter is registered for the requested resource type."""

    def __init__(self, resource_type: str) -> None:
        self.resource_type = resource_type
        super().__init__(f"Invalid resource type: {resource_type}")


class InvalidProgressError(ExportError):
    """A progress update would violate the progress invariants."""


class ExportTooLargeError(ExportError):
    """The export exceeds the configured record or file size limit."""
