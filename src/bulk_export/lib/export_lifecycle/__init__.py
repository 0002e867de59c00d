"""Export lifecycle library: value types, statuses, errors, and policies.

Pure Python building blocks shared by the ORM entity, the repository,
the admission guard, and the worker.
"""

from bulk_export.lib.export_lifecycle.errors import (
    AdmissionDenialReason,
    AdmissionDeniedError,
    ExportError,
    ExportNotFoundError,
    ExportTooLargeError,
    InvalidExportRequestError,
    InvalidProgressError,
    InvalidStateTransitionError,
    RetryLimitExceededError,
    UnknownResourceTypeError,
)
from bulk_export.lib.export_lifecycle.filters import filters_fingerprint, normalize_filters, validate_filters
from bulk_export.lib.export_lifecycle.ids import ExportId
from bulk_export.lib.export_lifecycle.progress import ExportProgress, ProgressThrottle, percentage_of
from bulk_export.lib.export_lifecycle.status import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ExportFormat,
    ExportStatus,
)

__all__ = [
    "ACTIVE_STATUSES",
    "AdmissionDenialReason",
    "AdmissionDeniedError",
    "ExportError",
    "ExportFormat",
    "ExportId",
    "ExportNotFoundError",
    "ExportProgress",
    "ExportStatus",
    "ExportTooLargeError",
    "InvalidExportRequestError",
    "InvalidProgressError",
    "InvalidStateTransitionError",
    "ProgressThrottle",
    "RetryLimitExceededError",
    "TERMINAL_STATUSES",
    "UnknownResourceTypeError",
    "filters_fingerprint",
    "normalize_filters",
    "percentage_of",
    "validate_filters",
]
