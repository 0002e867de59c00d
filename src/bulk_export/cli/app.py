"""Typer CLI root application with serve command."""

import typer

from bulk_export.core.config import get_settings
from bulk_export.core.logging import setup_logging

app = typer.Typer(name="bulk-export", help="Asynchronous bulk export job engine CLI")


@app.callback()
def _main_callback() -> None:
    """Initialize logging for all CLI commands."""
    settings = get_settings()
    setup_logging(settings.log_level, log_dir=settings.log_dir)


@app.command()
def serve(
    reload: bool = typer.Option(False, "--reload", help="Enable auto-reload for development"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind host"),  # noqa: S104
    port: int = typer.Option(8000, "--port", help="Bind port"),
) -> None:
    """Start the API server (with in-process workers when enabled)."""
    import uvicorn

    uvicorn.run(
        "bulk_export.main:create_app",
        factory=True,
        host=host,
        port=port,
        reload=reload,
    )


def _register_subcommands() -> None:
    """Register all CLI subcommand groups."""
    from bulk_export.cli.db_cmd import db_app
    from bulk_export.cli.export_cmd import export_app
    from bulk_export.cli.worker_cmd import reaper_app, worker_app

    app.add_typer(db_app, name="db", help="Database migration commands")
    app.add_typer(export_app, name="export", help="Export job commands")
    app.add_typer(worker_app, name="worker", help="Export worker commands")
    app.add_typer(reaper_app, name="reaper", help="Expiration reaper commands")


_register_subcommands()
