"""Export API endpoints for asynchronous bulk export jobs."""

from datetime import datetime
from typing import Annotated, Literal

import jwt
from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from fastapi.responses import FileResponse

from bulk_export.core.config import Settings, get_settings
from bulk_export.core.dependencies import get_current_requester, get_export_runtime, get_export_service
from bulk_export.core.security import Requester, verify_download_token
from bulk_export.lib.export_lifecycle import (
    AdmissionDeniedError,
    ExportError,
    ExportFormat,
    ExportNotFoundError,
    ExportStatus,
    InvalidExportRequestError,
    InvalidStateTransitionError,
    RetryLimitExceededError,
)
from bulk_export.lib.storage import LocalFileStorage
from bulk_export.models.export_job import ExportJob
from bulk_export.schemas.common import ErrorResponse, PaginationMeta
from bulk_export.schemas.export import (
    ExportAcceptedResponse,
    ExportJobSummary,
    ExportProgressResponse,
    ExportRequest,
    ExportStatisticsResponse,
    ExportStatusResponse,
    PaginatedExportJobResponse,
)
from bulk_export.services.export_repository import ExportListFilters
from bulk_export.services.export_service import ExportService, ExportStatusView
from bulk_export.services.runtime import ExportRuntime

exports_router = APIRouter(prefix="/exports", tags=["exports"])

ServiceDep = Annotated[ExportService, Depends(get_export_service)]
RequesterDep = Annotated[Requester, Depends(get_current_requester)]


def _http_error(exc: ExportError) -> HTTPException:
    """Translate a domain error into an HTTP error."""
    if isinstance(exc, ExportNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidStateTransitionError | RetryLimitExceededError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, AdmissionDeniedError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"reason": exc.reason.value, "message": exc.detail},
        )
    if isinstance(exc, InvalidExportRequestError):
        return HTTPException(status_code=422, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))


def _status_response(view: ExportStatusView) -> ExportStatusResponse:
    return ExportStatusResponse(
        export_id=view.export_id.value,
        status=view.status,
        resource_type=view.resource_type,
        format=view.format,
        progress=ExportProgressResponse(
            total_records=view.progress.total_records,
            processed_records=view.progress.processed_records,
            percentage=view.progress.percentage,
            message=view.progress.message,
        ),
        created_at=view.created_at,
        started_at=view.started_at,
        completed_at=view.completed_at,
        expires_at=view.expires_at,
        expires_in_hours=view.expires_in_hours,
        estimated_time_remaining=view.estimated_time_remaining,
        error_message=view.error_message,
        file_size=view.file_size,
        file_size_formatted=view.file_size_formatted,
        retry_count=view.retry_count,
        can_download=view.can_download,
        download_url=view.download_url,
    )


def _summary(job: ExportJob) -> ExportJobSummary:
    return ExportJobSummary.model_validate(job)


@exports_router.post(
    "",
    response_model=ExportAcceptedResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def request_export(
    request: ExportRequest,
    service: ServiceDep,
    requester: RequesterDep,
    settings: Annotated[Settings, Depends(get_settings)],
) -> ExportAcceptedResponse:
    """Queue a bulk export, or reuse an identical one completed moments ago."""
    try:
        result = await service.request_export(requester, request.resource_type, request.filters, request.format)
    except ExportError as exc:
        raise _http_error(exc) from exc
    return ExportAcceptedResponse(
        export_id=result.export_id.value,
        deduplicated=result.deduplicated,
        status_url=f"{settings.api_v1_prefix}/exports/{result.export_id}",
    )


@exports_router.get(
    "",
    response_model=PaginatedExportJobResponse,
)
async def list_exports(
    service: ServiceDep,
    requester: RequesterDep,
    scope: Literal["user", "organization"] = Query("user"),
    status_filter: ExportStatus | None = Query(None, alias="status"),
    resource_type: str | None = Query(None),
    format_filter: ExportFormat | None = Query(None, alias="format"),
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = Query("created_at"),
    sort_order: Literal["asc", "desc"] = Query("desc"),
) -> PaginatedExportJobResponse:
    """List the requester's exports, or their organization's."""
    filters = ExportListFilters(
        status=status_filter,
        resource_type=resource_type,
        format=format_filter,
        date_from=date_from,
        date_to=date_to,
    )
    try:
        result = await service.list_exports(requester, scope, filters, page, page_size, sort_by, sort_order)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return PaginatedExportJobResponse(
        items=[_summary(job) for job in result.items],
        pagination=PaginationMeta(
            total=result.total,
            page=result.page,
            page_size=result.page_size,
            total_pages=result.total_pages,
        ),
    )


@exports_router.get(
    "/statistics",
    response_model=ExportStatisticsResponse,
)
async def get_export_statistics(
    service: ServiceDep,
    requester: RequesterDep,
    date_from: datetime | None = Query(None),
    date_to: datetime | None = Query(None),
) -> ExportStatisticsResponse:
    """Export counts per status for the requester's organization."""
    stats = await service.get_statistics(requester, date_from, date_to)
    return ExportStatisticsResponse(**stats)


@exports_router.get("/download/{token}")
async def download_export(
    token: str,
    runtime: Annotated[ExportRuntime, Depends(get_export_runtime)],
    settings: Annotated[Settings, Depends(get_settings)],
) -> FileResponse:
    """Serve a locally stored artifact to the holder of a signed download token."""
    storage = runtime.storage
    if not isinstance(storage, LocalFileStorage):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export file not found")
    try:
        relative_path = verify_download_token(token, settings.jwt_secret_key, settings.jwt_algorithm)
        file_path = storage.resolve(relative_path)
    except (jwt.InvalidTokenError, ValueError) as exc:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired download link") from exc
    if not file_path.is_file():
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Export file not found")

    media_type = "application/octet-stream"
    for fmt in ExportFormat:
        if file_path.suffix == f".{fmt.extension}":
            media_type = fmt.media_type
    return FileResponse(path=file_path, media_type=media_type, filename=file_path.name)


@exports_router.get(
    "/{export_id}",
    response_model=ExportStatusResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_export_status(export_id: str, service: ServiceDep, requester: RequesterDep) -> ExportStatusResponse:
    """Get the status and progress of an export."""
    try:
        view = await service.get_status(export_id, requester)
    except ExportError as exc:
        raise _http_error(exc) from exc
    return _status_response(view)


@exports_router.post(
    "/{export_id}/cancel",
    response_model=ExportJobSummary,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_export(export_id: str, service: ServiceDep, requester: RequesterDep) -> ExportJobSummary:
    """Cancel a pending or processing export."""
    try:
        job = await service.cancel_export(export_id, requester)
    except ExportError as exc:
        raise _http_error(exc) from exc
    return _summary(job)


@exports_router.post(
    "/{export_id}/retry",
    response_model=ExportJobSummary,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def retry_export(export_id: str, service: ServiceDep, requester: RequesterDep) -> ExportJobSummary:
    """Re-queue a failed export."""
    try:
        job = await service.retry_export(export_id, requester)
    except ExportError as exc:
        raise _http_error(exc) from exc
    return _summary(job)


@exports_router.delete(
    "/{export_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_export(export_id: str, service: ServiceDep, requester: RequesterDep) -> Response:
    """Delete a finished export and its file."""
    try:
        await service.delete_export(export_id, requester)
    except ExportError as exc:
        raise _http_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
