"""Export Pydantic v2 request/response schemas."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field

from bulk_export.lib.export_lifecycle import ExportFormat, ExportStatus
from bulk_export.schemas.common import PaginationMeta


class ExportRequest(BaseModel):
    """Request to create a bulk data export.

    Filters are passed through to the resource exporter unchanged.
    """

    resource_type: str = Field(..., min_length=1, max_length=50)
    format: ExportFormat = ExportFormat.CSV
    filters: dict[str, Any] = Field(default_factory=dict)


class ExportAcceptedResponse(BaseModel):
    """Response for an admitted export request."""

    export_id: UUID
    deduplicated: bool = False
    status_url: str


class ExportProgressResponse(BaseModel):
    total_records: int
    processed_records: int
    percentage: int
    message: str | None = None


class ExportStatusResponse(BaseModel):
    """Status of a single export, including a download URL once ready."""

    export_id: UUID
    status: ExportStatus
    resource_type: str
    format: ExportFormat
    progress: ExportProgressResponse
    created_at: datetime
    started_at: datetime | None = None
    completed_at: datetime | None = None
    expires_at: datetime | None = None
    expires_in_hours: int | None = None
    estimated_time_remaining: str | None = None
    error_message: str | None = None
    file_size: int | None = None
    file_size_formatted: str
    retry_count: int
    can_download: bool
    download_url: str | None = None


class ExportJobSummary(BaseModel):
    """Export job as shown in listings."""

    id: UUID
    requester_id: int
    organization_id: int | None = None
    resource_type: str
    format: ExportFormat
    status: ExportStatus
    current_percentage: int
    current_message: str | None = None
    file_size: int | None = None
    error_message: str | None = None
    retry_count: int
    created_at: datetime
    completed_at: datetime | None = None
    expires_at: datetime | None = None

    model_config = {"from_attributes": True}


class PaginatedExportJobResponse(BaseModel):
    """Paginated list of export jobs."""

    items: list[ExportJobSummary]
    pagination: PaginationMeta


class ExportStatisticsResponse(BaseModel):
    """Export counts per status."""

    total: int
    pending: int
    processing: int
    completed: int
    failed: int
    cancelled: int
