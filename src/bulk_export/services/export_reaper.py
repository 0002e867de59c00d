"""Expiration reaper: removes expired artifacts, old rows, and stale claims.

Each pass is idempotent. Per-job failures are logged and skipped so one
bad record never blocks the rest of the pass.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import datetime

from loguru import logger

from bulk_export.core.config import Settings
from bulk_export.lib.storage import FileStorage
from bulk_export.models.base import utcnow
from bulk_export.services.export_repository import ExportJobRepository


@dataclass
class ReaperReport:
    """Counts from one reaper pass."""

    artifacts_removed: int = 0
    records_deleted: int = 0
    stale_recovered: int = 0
    errors: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.artifacts_removed or self.records_deleted or self.stale_recovered)


class ExportReaper:
    """Applies the retention, cleanup, and stale-claim policies.

    Args:
        repository: Export job repository.
        storage: Artifact storage.
        settings: Cleanup horizon and stale-claim configuration.
    """

    def __init__(self, repository: ExportJobRepository, storage: FileStorage, settings: Settings) -> None:
        self._repository = repository
        self._storage = storage
        self._settings = settings

    async def run_once(self, now: datetime | None = None) -> ReaperReport:
        """Run one reaper pass.

        1. Delete artifacts of COMPLETED jobs past ``expires_at``; the rows
           stay for history.
        2. Delete terminal rows (and any artifact) older than the cleanup
           horizon.
        3. Fail or re-queue PROCESSING jobs with no write for the stale
           window.

        Args:
            now: Evaluation time.

        Returns:
            What the pass changed.
        """
        now = now or utcnow()
        report = ReaperReport()

        for job in await self._repository.find_expired_jobs(now):
            if not job.file_path:
                continue
            try:
                if await self._storage.delete(job.file_path):
                    report.artifacts_removed += 1
                    logger.info(f"Removed expired artifact for export {job.id}")
            except Exception:
                report.errors += 1
                logger.exception(f"Failed to remove artifact for export {job.id}")

        for job in await self._repository.find_jobs_for_cleanup(now - self._settings.export_cleanup_after):
            try:
                if job.file_path and await self._storage.delete(job.file_path):
                    report.artifacts_removed += 1
                if await self._repository.delete_by_id(job.id):
                    report.records_deleted += 1
            except Exception:
                report.errors += 1
                logger.exception(f"Failed to clean up export {job.id}")

        stale_before = now - self._settings.export_stale_after
        action = self._settings.export_stale_action
        for job in await self._repository.find_stale_processing_jobs(stale_before):
            try:
                if await self._repository.recover_stale_job(job.id, stale_before, action):
                    report.stale_recovered += 1
                    logger.warning(f"Recovered stale export {job.id} (action={action})")
            except Exception:
                report.errors += 1
                logger.exception(f"Failed to recover stale export {job.id}")

        if report.changed or report.errors:
            logger.info(
                f"Reaper pass: {report.artifacts_removed} artifacts removed, "
                f"{report.records_deleted} records deleted, {report.stale_recovered} stale recovered, "
                f"{report.errors} errors"
            )
        return report

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Run a pass every ``export_reaper_interval_seconds`` until stopped."""
        interval = self._settings.export_reaper_interval_seconds
        logger.info(f"Export reaper started (interval={interval}s)")
        while stop_event is None or not stop_event.is_set():
            try:
                await self.run_once()
                if stop_event is None:
                    await asyncio.sleep(interval)
                else:
                    with contextlib.suppress(TimeoutError):
                        await asyncio.wait_for(stop_event.wait(), timeout=interval)
            except asyncio.CancelledError:
                logger.info("Export reaper cancelled")
                break
            except Exception:
                logger.exception("Export reaper loop error")
                await asyncio.sleep(interval)
        logger.info("Export reaper stopped")
