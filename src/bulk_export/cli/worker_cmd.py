"""Worker and reaper CLI commands for running export processing out of the API process."""

import asyncio
import contextlib
import signal

import typer

from bulk_export.core.config import get_settings

worker_app = typer.Typer()
reaper_app = typer.Typer()


def _stop_on_signals(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop_event.set)


@worker_app.command("run")
def worker_run(
    once: bool = typer.Option(False, "--once", help="Process one batch of pending exports and exit"),
    concurrency: int | None = typer.Option(None, "--concurrency", min=1, help="Number of worker loops"),
) -> None:
    """Claim and process pending exports."""
    asyncio.run(_worker_run(once, concurrency))


async def _worker_run(once: bool, concurrency: int | None) -> None:
    """Async implementation of worker run."""
    from bulk_export.services.runtime import open_runtime

    settings = get_settings()
    async with open_runtime(settings) as runtime:
        if once:
            claimed = await runtime.worker(worker_id="cli-worker").run_once()
            typer.echo(f"Processed {claimed} export(s)")
            return

        stop_event = asyncio.Event()
        _stop_on_signals(stop_event)
        count = concurrency or settings.export_worker_concurrency
        workers = [runtime.worker(worker_id=f"cli-worker-{index + 1}") for index in range(count)]
        typer.echo(f"Starting {count} export worker(s); press Ctrl+C to stop")
        await asyncio.gather(*(worker.run_forever(stop_event) for worker in workers))


@reaper_app.command("run")
def reaper_run(
    once: bool = typer.Option(False, "--once", help="Run a single reaper pass and exit"),
) -> None:
    """Remove expired artifacts, delete old exports, and recover stale claims."""
    asyncio.run(_reaper_run(once))


async def _reaper_run(once: bool) -> None:
    """Async implementation of reaper run."""
    from bulk_export.services.runtime import open_runtime

    settings = get_settings()
    async with open_runtime(settings) as runtime:
        reaper = runtime.reaper()
        if once:
            report = await reaper.run_once()
            typer.echo(f"Artifacts removed: {report.artifacts_removed}")
            typer.echo(f"Records deleted:   {report.records_deleted}")
            typer.echo(f"Stale recovered:   {report.stale_recovered}")
            typer.echo(f"Errors:            {report.errors}")
            return

        stop_event = asyncio.Event()
        _stop_on_signals(stop_event)
        await reaper.run_forever(stop_event)
