"""Export status and format enumerations, plus the transition table."""

import enum


class ExportStatus(enum.StrEnum):
    """Lifecycle status of an export job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    def can_transition_to(self, target: "ExportStatus") -> bool:
        """Return True if ``target`` is reachable from this status in one step."""
        return target in _TRANSITIONS[self]

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


_TRANSITIONS: dict[ExportStatus, frozenset[ExportStatus]] = {
    ExportStatus.PENDING: frozenset({ExportStatus.PROCESSING, ExportStatus.FAILED, ExportStatus.CANCELLED}),
    ExportStatus.PROCESSING: frozenset({ExportStatus.COMPLETED, ExportStatus.FAILED, ExportStatus.CANCELLED}),
    # FAILED -> PENDING is the explicit, bounded retry
    ExportStatus.FAILED: frozenset({ExportStatus.PENDING}),
    ExportStatus.COMPLETED: frozenset(),
    ExportStatus.CANCELLED: frozenset(),
}

ACTIVE_STATUSES = frozenset({ExportStatus.PENDING, ExportStatus.PROCESSING})
TERMINAL_STATUSES = frozenset({ExportStatus.COMPLETED, ExportStatus.FAILED, ExportStatus.CANCELLED})


class ExportFormat(enum.StrEnum):
    """Output format of an export artifact."""

    CSV = "csv"
    JSON = "json"
    EXCEL = "excel"

    @property
    def extension(self) -> str:
        return _EXTENSIONS[self]

    @property
    def media_type(self) -> str:
        return _MEDIA_TYPES[self]


_EXTENSIONS = {
    ExportFormat.CSV: "csv",
    ExportFormat.JSON: "json",
    ExportFormat.EXCEL: "xlsx",
}

_MEDIA_TYPES = {
    ExportFormat.CSV: "text/csv",
    ExportFormat.JSON: "application/json",
    ExportFormat.EXCEL: "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}
