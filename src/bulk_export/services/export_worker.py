"""Export worker: claims pending exports and produces their artifacts.

Any number of workers may poll the same database. The only coordination
between them is the repository's atomic PENDING -> PROCESSING claim, so a
job is processed by at most one worker. Each claim carries a fresh token that
every later write must present, so a worker whose job was re-queued as
stale cannot write over the next claim. Cancellation is cooperative: every
progress write doubles as a checkpoint, and a rejected write means the job
left PROCESSING and the worker must stop.
"""

import asyncio
import contextlib
import uuid
from pathlib import Path

from loguru import logger

from bulk_export.core.background import WakeSignal
from bulk_export.core.config import Settings
from bulk_export.lib.export_lifecycle import (
    ExportId,
    ExportTooLargeError,
    ProgressThrottle,
    percentage_of,
)
from bulk_export.lib.exporter import ExporterRegistry, ResourceExporter, open_writer
from bulk_export.lib.storage import FileStorage
from bulk_export.models.export_job import ExportJob
from bulk_export.services.export_repository import ExportJobRepository


class ExportCancelledError(Exception):
    """The job left PROCESSING while this worker was producing it."""


class ExportWorker:
    """Polls for pending exports and processes them one at a time.

    Args:
        repository: Export job repository.
        exporters: Resource exporters by resource type.
        storage: Destination for finished artifacts.
        settings: Worker, limit, and progress configuration.
        wake_signal: Optional signal that cuts the poll wait short.
        worker_id: Name used in log lines.
    """

    def __init__(
        self,
        repository: ExportJobRepository,
        exporters: ExporterRegistry,
        storage: FileStorage,
        settings: Settings,
        wake_signal: WakeSignal | None = None,
        worker_id: str | None = None,
    ) -> None:
        self._repository = repository
        self._exporters = exporters
        self._storage = storage
        self._settings = settings
        self._wake_signal = wake_signal
        self.worker_id = worker_id or f"worker-{uuid.uuid4().hex[:8]}"
        self._work_dir = Path(settings.export_dir) / ".tmp"

    async def run_once(self) -> int:
        """Process one batch of pending exports, oldest first.

        Returns:
            Number of jobs this worker claimed.
        """
        jobs = await self._repository.find_pending_jobs(self._settings.export_pending_batch_size)
        claimed = 0
        for job in jobs:
            if await self.process_job(job):
                claimed += 1
        return claimed

    async def process_job(self, job: ExportJob) -> bool:
        """Claim and process a single pending export.

        Processing failures are recorded on the job, never raised.

        Returns:
            False if another worker claimed the job first.
        """
        export_id = job.export_id
        claim_token = uuid.uuid4().hex
        exporter: ResourceExporter | None = None
        estimate = 0
        estimate_error: str | None = None
        try:
            exporter = self._exporters.get(job.resource_type)
            estimate = max(0, await exporter.count(job.resource_filters))
        except Exception as exc:
            estimate_error = str(exc) or type(exc).__name__

        if not await self._repository.mark_as_processing(export_id, estimate, claim_token=claim_token):
            logger.debug(f"{self.worker_id}: export {export_id} already claimed")
            return False
        logger.info(f"{self.worker_id}: processing export {export_id} ({job.resource_type}, ~{estimate} records)")

        if estimate_error is not None or exporter is None:
            await self._fail(export_id, claim_token, estimate_error or "No exporter available")
            return True
        max_records = self._settings.max_records_for(job.export_format)
        if estimate > max_records:
            await self._fail(
                export_id,
                claim_token,
                f"Export exceeds maximum allowed records ({estimate} > {max_records})",
            )
            return True

        try:
            await self._produce(job, claim_token, exporter, estimate)
        except ExportCancelledError:
            logger.info(f"{self.worker_id}: export {export_id} was cancelled or reclaimed, stopping")
        except Exception as exc:
            logger.exception(f"{self.worker_id}: export {export_id} failed")
            await self._fail(export_id, claim_token, str(exc) or type(exc).__name__)
        return True

    async def _fail(self, export_id: ExportId, claim_token: str, message: str) -> None:
        if await self._repository.mark_as_failed(export_id, message, claim_token=claim_token):
            logger.warning(f"{self.worker_id}: export {export_id} failed: {message}")

    async def _checkpoint(
        self, export_id: ExportId, claim_token: str, processed: int, total: int, message: str
    ) -> None:
        written = await self._repository.update_progress(
            export_id,
            percentage_of(processed, total) if total else 100,
            message,
            processed,
            total,
            claim_token=claim_token,
        )
        if not written:
            raise ExportCancelledError(str(export_id))

    async def _produce(self, job: ExportJob, claim_token: str, exporter: ResourceExporter, estimate: int) -> None:
        settings = self._settings
        max_records = settings.max_records_for(job.export_format)
        export_id = job.export_id
        fmt = job.export_format
        name = f"export_{job.resource_type}_{job.id}.{fmt.extension}"
        self._work_dir.mkdir(parents=True, exist_ok=True)
        temp_path = self._work_dir / f"{claim_token}_{name}"
        throttle = ProgressThrottle(
            min_interval=settings.export_progress_min_interval_seconds,
            min_step=settings.export_progress_min_step,
        )

        total = estimate
        processed = 0
        try:
            writer = open_writer(fmt, temp_path, exporter.columns, csv_include_bom=settings.export_csv_include_bom)
            try:
                async for batch in exporter.iter_batches(job.resource_filters, settings.export_batch_size):
                    processed += writer.write_batch(batch)
                    if processed > max_records:
                        msg = f"Export exceeds maximum allowed records ({max_records})"
                        raise ExportTooLargeError(msg)
                    # The estimate can be low; never report more processed than total
                    total = max(total, processed)
                    if throttle.should_report(percentage_of(processed, total)):
                        message = f"Processed {processed} of {total} records"
                        await self._checkpoint(export_id, claim_token, processed, total, message)
            finally:
                writer.close()

            file_size = temp_path.stat().st_size
            if file_size > settings.export_max_file_size_bytes:
                msg = f"Export file too large ({file_size} bytes > {settings.export_max_file_size_bytes})"
                raise ExportTooLargeError(msg)

            await self._checkpoint(export_id, claim_token, processed, processed, "Finalizing export...")
            stored = await self._storage.store(temp_path, name, content_type=fmt.media_type)
        finally:
            temp_path.unlink(missing_ok=True)

        if await self._repository.mark_as_completed(export_id, stored.path, stored.size, claim_token=claim_token):
            logger.info(f"{self.worker_id}: export {export_id} completed ({processed} records, {stored.size} bytes)")
            return
        # Cancelled or reclaimed between the last checkpoint and completion
        await self._storage.delete(stored.path)
        raise ExportCancelledError(str(export_id))

    async def _idle(self, stop_event: asyncio.Event | None) -> None:
        interval = self._settings.export_poll_interval_seconds
        if self._wake_signal is not None:
            await self._wake_signal.wait(interval)
        elif stop_event is not None:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_event.wait(), timeout=interval)
        else:
            await asyncio.sleep(interval)

    async def run_forever(self, stop_event: asyncio.Event | None = None) -> None:
        """Poll for pending exports until ``stop_event`` is set or the task is cancelled."""
        logger.info(
            f"Export worker {self.worker_id} started (poll interval={self._settings.export_poll_interval_seconds}s)"
        )
        while stop_event is None or not stop_event.is_set():
            try:
                claimed = await self.run_once()
                if not claimed:
                    await self._idle(stop_event)
            except asyncio.CancelledError:
                logger.info(f"Export worker {self.worker_id} cancelled")
                break
            except Exception:
                logger.exception(f"Export worker {self.worker_id} loop error")
                await self._idle(stop_event)
        logger.info(f"Export worker {self.worker_id} stopped")
