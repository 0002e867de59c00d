"""Export CLI commands for requesting and managing export jobs."""

import asyncio
import json

import typer

from bulk_export.core.config import get_settings
from bulk_export.core.security import Requester
from bulk_export.lib.export_lifecycle import ExportError, ExportFormat

export_app = typer.Typer()

_REQUESTER_OPTION = typer.Option(..., "--requester", help="Requester id")
_ORG_OPTION = typer.Option(None, "--org", help="Organization id")


def _parse_filters(raw: list[str]) -> dict:
    """Parse ``key=value`` pairs; values are read as JSON when possible."""
    filters: dict = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key:
            typer.echo(f"Invalid filter {item!r}; expected key=value", err=True)
            raise typer.Exit(code=1)
        try:
            filters[key] = json.loads(value)
        except json.JSONDecodeError:
            filters[key] = value
    return filters


@export_app.command("request")
def export_request(
    resource_type: str = typer.Argument(..., help="Resource type, e.g. donations"),
    requester_id: int = _REQUESTER_OPTION,
    organization_id: int | None = _ORG_OPTION,
    output_format: ExportFormat = typer.Option(ExportFormat.CSV, "--format", help="Output format"),
    filters: list[str] = typer.Option([], "--filter", "-f", help="Filter as key=value (repeatable)"),
) -> None:
    """Queue a new export job."""
    requester = Requester(requester_id=requester_id, organization_id=organization_id)
    asyncio.run(_export_request(requester, resource_type, _parse_filters(filters), output_format))


async def _export_request(requester: Requester, resource_type: str, filters: dict, output_format: ExportFormat) -> None:
    """Async implementation of export request."""
    from bulk_export.services.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        try:
            result = await runtime.export_service().request_export(requester, resource_type, filters, output_format)
        except ExportError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    if result.deduplicated:
        typer.echo(f"Reusing recent export: {result.export_id}")
    else:
        typer.echo(f"Export job queued: {result.export_id}")


@export_app.command("status")
def export_status(
    export_id: str = typer.Argument(..., help="Export id"),
    requester_id: int = _REQUESTER_OPTION,
) -> None:
    """Show the status of an export job."""
    asyncio.run(_export_status(export_id, Requester(requester_id=requester_id)))


async def _export_status(export_id: str, requester: Requester) -> None:
    """Async implementation of export status."""
    from bulk_export.services.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        try:
            view = await runtime.export_service().get_status(export_id, requester)
        except ExportError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc

    typer.echo(f"Export:     {view.export_id}")
    typer.echo(f"Status:     {view.status}")
    typer.echo(f"Resource:   {view.resource_type} ({view.format})")
    typer.echo(f"Progress:   {view.progress.percentage}% ({view.progress.processed_records}/{view.progress.total_records})")
    if view.progress.message:
        typer.echo(f"Message:    {view.progress.message}")
    if view.estimated_time_remaining:
        typer.echo(f"Remaining:  {view.estimated_time_remaining}")
    if view.error_message:
        typer.echo(f"Error:      {view.error_message}")
    if view.download_url:
        typer.echo(f"File size:  {view.file_size_formatted}")
        typer.echo(f"Expires in: {view.expires_in_hours}h")
        typer.echo(f"Download:   {view.download_url}")


@export_app.command("cancel")
def export_cancel(
    export_id: str = typer.Argument(..., help="Export id"),
    requester_id: int = _REQUESTER_OPTION,
) -> None:
    """Cancel a pending or processing export."""
    asyncio.run(_export_transition("cancel", export_id, Requester(requester_id=requester_id)))


@export_app.command("retry")
def export_retry(
    export_id: str = typer.Argument(..., help="Export id"),
    requester_id: int = _REQUESTER_OPTION,
) -> None:
    """Re-queue a failed export."""
    asyncio.run(_export_transition("retry", export_id, Requester(requester_id=requester_id)))


async def _export_transition(action: str, export_id: str, requester: Requester) -> None:
    """Async implementation of cancel and retry."""
    from bulk_export.services.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        service = runtime.export_service()
        try:
            if action == "cancel":
                job = await service.cancel_export(export_id, requester)
            else:
                job = await service.retry_export(export_id, requester)
        except ExportError as exc:
            typer.echo(f"Error: {exc}", err=True)
            raise typer.Exit(code=1) from exc
    typer.echo(f"Export {job.id} is now {job.status}")


@export_app.command("stats")
def export_stats(
    requester_id: int = _REQUESTER_OPTION,
    organization_id: int | None = _ORG_OPTION,
) -> None:
    """Show export counts per status."""
    asyncio.run(_export_stats(Requester(requester_id=requester_id, organization_id=organization_id)))


async def _export_stats(requester: Requester) -> None:
    """Async implementation of export stats."""
    from bulk_export.services.runtime import open_runtime

    async with open_runtime(get_settings()) as runtime:
        stats = await runtime.export_service().get_statistics(requester)
    for key, value in stats.items():
        typer.echo(f"{key:<11} {value}")
