"""FastAPI application factory.

Creates the FastAPI app with lifespan management and OpenAPI metadata.
When enabled in settings, export workers and the expiration reaper run as
background tasks inside the API process.
"""

import asyncio
import contextlib
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from bulk_export.core.config import get_settings
from bulk_export.core.database import dispose_engine, get_session_factory, init_engine
from bulk_export.core.logging import setup_logging
from bulk_export.services.runtime import build_runtime, set_runtime


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Manage application lifecycle: engine, export runtime, and background loops."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)
    init_engine(settings.database_url, echo=False, schema=settings.database_schema)
    runtime = build_runtime(settings, get_session_factory())
    set_runtime(runtime)

    tasks: list[asyncio.Task[None]] = []
    if settings.export_worker_enabled:
        for index in range(settings.export_worker_concurrency):
            worker = runtime.worker(worker_id=f"api-worker-{index + 1}")
            tasks.append(asyncio.create_task(worker.run_forever()))
    if settings.export_reaper_enabled:
        tasks.append(asyncio.create_task(runtime.reaper().run_forever()))

    yield

    for task in tasks:
        task.cancel()
    for task in tasks:
        with contextlib.suppress(asyncio.CancelledError):
            await task

    set_runtime(None)
    await dispose_engine()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application.

    Returns:
        Configured FastAPI application instance.
    """
    settings = get_settings()

    app = FastAPI(
        title="Bulk Export API",
        description="Asynchronous bulk data exports with progress tracking and expiring downloads",
        version="0.1.0",
        lifespan=lifespan,
    )

    from bulk_export.api.router import create_router

    app.include_router(create_router(settings))

    return app
