"""Export job repository: persistence and query contract for ExportJob rows.

Every method opens its own short session from the session factory, so
concurrent workers in one process never share a session. All writes that
race with other actors (claim, progress, terminal writes, requester
transitions) are single conditional UPDATE/DELETE statements whose
``rowcount`` tells the caller whether the write took effect.
"""

import math
import uuid
from collections.abc import Collection, Sequence
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any, Literal

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import Select

from bulk_export.lib.export_lifecycle import (
    ACTIVE_STATUSES,
    TERMINAL_STATUSES,
    ExportFormat,
    ExportId,
    ExportNotFoundError,
    ExportStatus,
    filters_fingerprint,
    normalize_filters,
)
from bulk_export.models.base import utcnow
from bulk_export.models.export_job import ExportJob

SORTABLE_COLUMNS = frozenset({"created_at", "completed_at", "status", "resource_type", "format", "file_size"})

# Columns each state-machine transition changes, keyed by the status it moves to.
# Cancel and fail leave the progress columns to the claim holder.
_TRANSITION_COLUMNS: dict[ExportStatus, tuple[str, ...]] = {
    ExportStatus.PROCESSING: (
        "status",
        "started_at",
        "total_records",
        "processed_records",
        "current_percentage",
        "current_message",
    ),
    ExportStatus.COMPLETED: (
        "status",
        "completed_at",
        "expires_at",
        "file_path",
        "file_size",
        "current_percentage",
        "current_message",
    ),
    ExportStatus.FAILED: ("status", "completed_at", "error_message", "current_message"),
    ExportStatus.CANCELLED: ("status", "completed_at", "error_message", "current_message"),
    ExportStatus.PENDING: (
        "status",
        "started_at",
        "completed_at",
        "expires_at",
        "error_message",
        "file_path",
        "file_size",
        "total_records",
        "processed_records",
        "current_percentage",
        "current_message",
        "retry_count",
        "claim_token",
    ),
}

ExportIdLike = ExportId | uuid.UUID | str
StaleAction = Literal["fail", "requeue"]


@dataclass
class ExportListFilters:
    """Optional criteria for listing export jobs."""

    status: ExportStatus | None = None
    resource_type: str | None = None
    format: ExportFormat | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    organization_id: int | None = None
    requester_id: int | None = None


@dataclass
class ExportPage:
    """One page of export jobs."""

    items: list[ExportJob] = field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20

    @property
    def total_pages(self) -> int:
        if self.total == 0:
            return 0
        return math.ceil(self.total / self.page_size)


def _status_values(statuses: Collection[ExportStatus]) -> list[str]:
    return [ExportStatus(s).value for s in statuses]


def _start_of_day(now: datetime) -> datetime:
    return now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


def _held_claim(claim_token: str | None) -> tuple[Any, ...]:
    """Criteria for a worker write: PROCESSING, and still under the caller's claim."""
    criteria: tuple[Any, ...] = (ExportJob.status == ExportStatus.PROCESSING.value,)
    if claim_token is not None:
        criteria += (ExportJob.claim_token == claim_token,)
    return criteria


class ExportJobRepository:
    """Async repository for export jobs.

    Args:
        session_factory: SQLAlchemy async session factory.
        retention: How long a completed artifact stays downloadable.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], *, retention: timedelta) -> None:
        if retention <= timedelta(0):
            msg = "retention must be positive"
            raise ValueError(msg)
        self._session_factory = session_factory
        self._retention = retention

    @property
    def retention(self) -> timedelta:
        return self._retention

    # -- single-row reads and writes -------------------------------------

    async def store(self, job: ExportJob) -> ExportJob:
        """Insert or overwrite a job (idempotent upsert)."""
        async with self._session_factory() as session:
            merged = await session.merge(job)
            await session.commit()
            return merged

    async def find_by_export_id(self, export_id: ExportIdLike) -> ExportJob | None:
        key = ExportId.coerce(export_id).value
        async with self._session_factory() as session:
            return await session.get(ExportJob, key)

    async def find_by_id_or_fail(self, export_id: ExportIdLike) -> ExportJob:
        """Return the job or raise ExportNotFoundError."""
        job = await self.find_by_export_id(export_id)
        if job is None:
            raise ExportNotFoundError(export_id)
        return job

    async def exists(self, export_id: ExportIdLike) -> bool:
        key = ExportId.coerce(export_id).value
        async with self._session_factory() as session:
            result = await session.execute(select(func.count(ExportJob.id)).where(ExportJob.id == key))
            return result.scalar_one() > 0

    async def _fetch(self, query: Select[Any]) -> list[ExportJob]:
        async with self._session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def _conditional_update(self, export_id: ExportIdLike, *criteria: Any, **values: Any) -> bool:
        key = ExportId.coerce(export_id).value
        values.setdefault("updated_at", utcnow())
        stmt = (
            update(ExportJob)
            .where(ExportJob.id == key, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount == 1

    # -- worker queue ----------------------------------------------------

    async def find_pending_jobs(self, limit: int = 50) -> list[ExportJob]:
        """PENDING jobs, oldest first."""
        query = (
            select(ExportJob)
            .where(ExportJob.status == ExportStatus.PENDING.value)
            .order_by(ExportJob.created_at.asc(), ExportJob.id.asc())
            .limit(limit)
        )
        return await self._fetch(query)

    async def find_oldest_pending_job(self) -> ExportJob | None:
        jobs = await self.find_pending_jobs(limit=1)
        return jobs[0] if jobs else None

    async def find_processing_jobs(self) -> list[ExportJob]:
        query = (
            select(ExportJob)
            .where(ExportJob.status == ExportStatus.PROCESSING.value)
            .order_by(ExportJob.started_at.asc())
        )
        return await self._fetch(query)

    async def mark_as_processing(
        self,
        export_id: ExportIdLike,
        total_records: int = 0,
        *,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """Atomically claim a PENDING job.

        Exactly one of any number of concurrent callers sees ``True``.

        Args:
            export_id: Job to claim.
            total_records: Initial record estimate.
            claim_token: Token the claim holder passes to every later write,
                so writes from an older claim on a re-queued job are rejected.
            now: Claim time.

        Returns:
            True if this call moved the job from PENDING to PROCESSING.
        """
        now = now or utcnow()
        return await self._conditional_update(
            export_id,
            ExportJob.status == ExportStatus.PENDING.value,
            status=ExportStatus.PROCESSING.value,
            started_at=now,
            total_records=total_records,
            processed_records=0,
            current_percentage=0,
            current_message="Starting export processing...",
            claim_token=claim_token,
            updated_at=now,
        )

    async def update_progress(
        self,
        export_id: ExportIdLike,
        percentage: int,
        message: str | None,
        processed_records: int,
        total_records: int | None = None,
        *,
        claim_token: str | None = None,
    ) -> bool:
        """Record progress for a PROCESSING job.

        Returns:
            False if the job is no longer PROCESSING under ``claim_token``
            (for example it was cancelled, or re-queued and claimed by
            another worker), in which case nothing was written.
        """
        values: dict[str, Any] = {
            "current_percentage": max(0, min(100, percentage)),
            "processed_records": processed_records,
        }
        if message is not None:
            values["current_message"] = message
        if total_records is not None:
            values["total_records"] = total_records
        return await self._conditional_update(
            export_id,
            *_held_claim(claim_token),
            **values,
        )

    async def mark_as_completed(
        self,
        export_id: ExportIdLike,
        file_path: str,
        file_size: int,
        *,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """PROCESSING -> COMPLETED; starts the retention window."""
        now = now or utcnow()
        return await self._conditional_update(
            export_id,
            *_held_claim(claim_token),
            status=ExportStatus.COMPLETED.value,
            completed_at=now,
            expires_at=now + self._retention,
            file_path=file_path,
            file_size=file_size,
            current_percentage=100,
            current_message="Export completed successfully",
            updated_at=now,
        )

    async def mark_as_failed(
        self,
        export_id: ExportIdLike,
        error_message: str,
        *,
        claim_token: str | None = None,
        now: datetime | None = None,
    ) -> bool:
        """PROCESSING -> FAILED."""
        now = now or utcnow()
        return await self._conditional_update(
            export_id,
            *_held_claim(claim_token),
            status=ExportStatus.FAILED.value,
            completed_at=now,
            error_message=error_message,
            current_message=f"Export failed: {error_message}",
            updated_at=now,
        )

    async def store_transition(self, job: ExportJob, expected_status: ExportStatus) -> bool:
        """Persist an entity mutated by a state-machine method.

        The write only lands if the stored status still equals
        ``expected_status``; otherwise another actor got there first. Only
        the columns the transition owns are written, so a cancel never rolls
        back progress the worker reported after ``job`` was read.
        """
        expected_status = ExportStatus(expected_status)
        values = {column: getattr(job, column) for column in _TRANSITION_COLUMNS[job.export_status]}
        if expected_status is ExportStatus.PENDING and job.export_status.is_terminal:
            # Cancelled or failed before any claim: started_at is still unset
            values["started_at"] = job.started_at
        values["updated_at"] = utcnow()
        stored = await self._conditional_update(
            job.id,
            ExportJob.status == expected_status.value,
            **values,
        )
        if stored:
            job.updated_at = values["updated_at"]
        return stored

    # -- expiry, cleanup, stale claims -------------------------------------

    async def find_expired_jobs(self, before: datetime | None = None, limit: int | None = None) -> list[ExportJob]:
        """COMPLETED jobs whose retention window ended before ``before``."""
        before = before or utcnow()
        query = (
            select(ExportJob)
            .where(
                ExportJob.status == ExportStatus.COMPLETED.value,
                ExportJob.expires_at.is_not(None),
                ExportJob.expires_at < before,
            )
            .order_by(ExportJob.expires_at.asc())
        )
        if limit is not None:
            query = query.limit(limit)
        return await self._fetch(query)

    async def find_jobs_for_cleanup(self, older_than: datetime) -> list[ExportJob]:
        """Terminal jobs created before ``older_than``."""
        query = (
            select(ExportJob)
            .where(
                ExportJob.status.in_(_status_values(TERMINAL_STATUSES)),
                ExportJob.created_at < older_than,
            )
            .order_by(ExportJob.created_at.asc())
        )
        return await self._fetch(query)

    async def find_stale_processing_jobs(self, before: datetime) -> list[ExportJob]:
        """PROCESSING jobs with no write since ``before``."""
        query = (
            select(ExportJob)
            .where(
                ExportJob.status == ExportStatus.PROCESSING.value,
                ExportJob.updated_at < before,
            )
            .order_by(ExportJob.updated_at.asc())
        )
        return await self._fetch(query)

    async def recover_stale_job(self, export_id: ExportIdLike, before: datetime, action: StaleAction = "fail") -> bool:
        """Force-fail or re-queue a stale PROCESSING job.

        Only applies while the job is still PROCESSING and has not been
        written since ``before``, so a worker that resumed wins the race.
        A re-queue drops the claim token, so a stalled worker that wakes up
        later cannot write to the next claim.
        """
        stale = (
            ExportJob.status == ExportStatus.PROCESSING.value,
            ExportJob.updated_at < before,
        )
        now = utcnow()
        if action == "requeue":
            return await self._conditional_update(
                export_id,
                *stale,
                status=ExportStatus.PENDING.value,
                started_at=None,
                total_records=None,
                processed_records=0,
                current_percentage=0,
                current_message="Export re-queued after worker stopped responding",
                claim_token=None,
                updated_at=now,
            )
        error_message = "Worker stopped responding"
        return await self._conditional_update(
            export_id,
            *stale,
            status=ExportStatus.FAILED.value,
            completed_at=now,
            error_message=error_message,
            current_message=f"Export failed: {error_message}",
            updated_at=now,
        )

    # -- admission queries -------------------------------------------------

    async def find_similar_recent_export(
        self,
        requester_id: int,
        resource_type: str,
        filters: dict[str, Any] | None,
        since: datetime,
        export_format: ExportFormat | str | None = None,
    ) -> ExportJob | None:
        """Newest COMPLETED job with equivalent filters created at/after ``since``.

        Filter equality is order-independent: both sides are compared by
        the fingerprint of their normalised form.
        """
        fingerprint = filters_fingerprint(normalize_filters(filters))
        query = select(ExportJob).where(
            ExportJob.requester_id == requester_id,
            ExportJob.resource_type == resource_type,
            ExportJob.filters_fingerprint == fingerprint,
            ExportJob.status == ExportStatus.COMPLETED.value,
            ExportJob.created_at >= since,
        )
        if export_format is not None:
            query = query.where(ExportJob.format == ExportFormat(export_format).value)
        query = query.order_by(ExportJob.created_at.desc()).limit(1)
        jobs = await self._fetch(query)
        return jobs[0] if jobs else None

    async def _count(self, *criteria: Any) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count(ExportJob.id)).where(*criteria))
            return result.scalar_one()

    async def count_pending_by_user(self, requester_id: int) -> int:
        return await self._count(
            ExportJob.requester_id == requester_id,
            ExportJob.status == ExportStatus.PENDING.value,
        )

    async def count_today_by_user(self, requester_id: int, now: datetime | None = None) -> int:
        """Jobs the requester created since the start of the current UTC day."""
        return await self._count(
            ExportJob.requester_id == requester_id,
            ExportJob.created_at >= _start_of_day(now or utcnow()),
        )

    async def get_active_jobs_count(
        self,
        requester_id: int | None = None,
        organization_id: int | None = None,
    ) -> int:
        """Count PENDING and PROCESSING jobs, optionally scoped."""
        criteria = [ExportJob.status.in_(_status_values(ACTIVE_STATUSES))]
        if requester_id is not None:
            criteria.append(ExportJob.requester_id == requester_id)
        if organization_id is not None:
            criteria.append(ExportJob.organization_id == organization_id)
        return await self._count(*criteria)

    async def count_by_status(self, status: ExportStatus, organization_id: int | None = None) -> int:
        criteria = [ExportJob.status == ExportStatus(status).value]
        if organization_id is not None:
            criteria.append(ExportJob.organization_id == organization_id)
        return await self._count(*criteria)

    # -- listing -------------------------------------------------------------

    @staticmethod
    def _apply_filters(query: Select[Any], filters: ExportListFilters | None) -> Select[Any]:
        if filters is None:
            return query
        if filters.status is not None:
            query = query.where(ExportJob.status == ExportStatus(filters.status).value)
        if filters.resource_type:
            query = query.where(ExportJob.resource_type == filters.resource_type)
        if filters.format is not None:
            query = query.where(ExportJob.format == ExportFormat(filters.format).value)
        if filters.date_from is not None:
            query = query.where(ExportJob.created_at >= filters.date_from)
        if filters.date_to is not None:
            query = query.where(ExportJob.created_at <= filters.date_to)
        if filters.organization_id is not None:
            query = query.where(ExportJob.organization_id == filters.organization_id)
        if filters.requester_id is not None:
            query = query.where(ExportJob.requester_id == filters.requester_id)
        return query

    async def paginate(
        self,
        page: int = 1,
        per_page: int = 20,
        filters: ExportListFilters | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> ExportPage:
        """List jobs a page at a time.

        Args:
            page: 1-based page number.
            per_page: Items per page.
            filters: Optional criteria.
            sort_by: One of ``SORTABLE_COLUMNS``.
            sort_order: ``asc`` or ``desc``.

        Returns:
            The requested page and the total match count.

        Raises:
            ValueError: On an unknown sort column or order, or a non-positive page.
        """
        if sort_by not in SORTABLE_COLUMNS:
            msg = f"Cannot sort by '{sort_by}'; allowed: {', '.join(sorted(SORTABLE_COLUMNS))}"
            raise ValueError(msg)
        if sort_order not in ("asc", "desc"):
            msg = f"sort_order must be 'asc' or 'desc', got '{sort_order}'"
            raise ValueError(msg)
        if page < 1 or per_page < 1:
            msg = "page and per_page must be positive"
            raise ValueError(msg)

        column = getattr(ExportJob, sort_by)
        ordering = column.asc() if sort_order == "asc" else column.desc()
        query = self._apply_filters(select(ExportJob), filters)
        count_query = self._apply_filters(select(func.count(ExportJob.id)), filters)

        async with self._session_factory() as session:
            total = (await session.execute(count_query)).scalar_one()
            result = await session.execute(
                query.order_by(ordering, ExportJob.id.asc()).offset((page - 1) * per_page).limit(per_page)
            )
            items = list(result.scalars().all())
        return ExportPage(items=items, total=total, page=page, page_size=per_page)

    async def get_user_exports_history(
        self,
        requester_id: int,
        page: int = 1,
        per_page: int = 20,
        filters: ExportListFilters | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> ExportPage:
        scoped = replace(filters or ExportListFilters(), requester_id=requester_id)
        return await self.paginate(page, per_page, scoped, sort_by, sort_order)

    async def get_organization_exports_history(
        self,
        organization_id: int,
        page: int = 1,
        per_page: int = 20,
        filters: ExportListFilters | None = None,
        sort_by: str = "created_at",
        sort_order: str = "desc",
    ) -> ExportPage:
        scoped = replace(filters or ExportListFilters(), organization_id=organization_id)
        return await self.paginate(page, per_page, scoped, sort_by, sort_order)

    async def find_by_user(self, requester_id: int, limit: int = 50) -> list[ExportJob]:
        query = (
            select(ExportJob)
            .where(ExportJob.requester_id == requester_id)
            .order_by(ExportJob.created_at.desc())
            .limit(limit)
        )
        return await self._fetch(query)

    async def find_by_organization(self, organization_id: int, limit: int = 100) -> list[ExportJob]:
        query = (
            select(ExportJob)
            .where(ExportJob.organization_id == organization_id)
            .order_by(ExportJob.created_at.desc())
            .limit(limit)
        )
        return await self._fetch(query)

    async def get_statistics(
        self,
        organization_id: int | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        requester_id: int | None = None,
    ) -> dict[str, int]:
        """Job counts per status plus the overall total."""
        query = select(ExportJob.status, func.count(ExportJob.id)).group_by(ExportJob.status)
        if organization_id is not None:
            query = query.where(ExportJob.organization_id == organization_id)
        if requester_id is not None:
            query = query.where(ExportJob.requester_id == requester_id)
        if date_from is not None:
            query = query.where(ExportJob.created_at >= date_from)
        if date_to is not None:
            query = query.where(ExportJob.created_at <= date_to)

        async with self._session_factory() as session:
            rows = (await session.execute(query)).all()

        stats = {"total": 0, **{status.value: 0 for status in ExportStatus}}
        for status, count in rows:
            stats[status] = count
            stats["total"] += count
        return stats

    # -- deletion --------------------------------------------------------------

    async def delete_expired_jobs(self, before: datetime | None = None) -> int:
        """Delete COMPLETED rows whose retention ended before ``before``."""
        before = before or utcnow()
        stmt = delete(ExportJob).where(
            ExportJob.status == ExportStatus.COMPLETED.value,
            ExportJob.expires_at < before,
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            await session.commit()
            return result.rowcount

    async def delete_by_id(self, export_id: ExportIdLike) -> bool:
        key = ExportId.coerce(export_id).value
        async with self._session_factory() as session:
            result = await session.execute(
                delete(ExportJob).where(ExportJob.id == key).execution_options(synchronize_session=False)
            )
            await session.commit()
            return result.rowcount == 1

    async def delete_if_status(self, export_id: ExportIdLike, allowed: Sequence[ExportStatus]) -> bool:
        """Delete the row only while its status is one of ``allowed``."""
        key = ExportId.coerce(export_id).value
        stmt = delete(ExportJob).where(
            ExportJob.id == key,
            ExportJob.status.in_(_status_values(allowed)),
        )
        async with self._session_factory() as session:
            result = await session.execute(stmt.execution_options(synchronize_session=False))
            await session.commit()
            return result.rowcount == 1
