"""Exporter library: resource exporters and streaming format writers.

Provides the resource exporter protocol and registry, plus incremental
CSV, JSON, and Excel writers selected by export format.
"""

from collections.abc import Sequence
from pathlib import Path

from bulk_export.lib.export_lifecycle import ExportFormat
from bulk_export.lib.exporter.base import ExportWriter, sanitize_cell
from bulk_export.lib.exporter.csv_writer import CsvWriter
from bulk_export.lib.exporter.excel_writer import EXCEL_MAX_ROWS, ExcelWriter
from bulk_export.lib.exporter.json_writer import JsonWriter
from bulk_export.lib.exporter.registry import ExporterRegistry, IterableExporter, ResourceExporter

SUPPORTED_FORMATS = [f.value for f in ExportFormat]


def open_writer(
    export_format: ExportFormat | str,
    output_path: Path,
    columns: Sequence[str] | None = None,
    *,
    csv_include_bom: bool = True,
) -> ExportWriter:
    """Open a streaming writer for ``export_format``.

    Args:
        export_format: Target format.
        output_path: File to create.
        columns: Column selection; inferred from the first record when omitted.
        csv_include_bom: Whether CSV output starts with a UTF-8 BOM.

    Returns:
        An open ExportWriter.

    Raises:
        ValueError: If the format is not supported.
    """
    try:
        fmt = ExportFormat(export_format)
    except ValueError:
        msg = f"Unsupported format: {export_format}. Supported: {SUPPORTED_FORMATS}"
        raise ValueError(msg) from None

    if fmt is ExportFormat.CSV:
        return CsvWriter(output_path, columns, include_bom=csv_include_bom)
    if fmt is ExportFormat.JSON:
        return JsonWriter(output_path, columns)
    return ExcelWriter(output_path, columns)


__all__ = [
    "EXCEL_MAX_ROWS",
    "CsvWriter",
    "ExcelWriter",
    "ExportWriter",
    "ExporterRegistry",
    "IterableExporter",
    "JsonWriter",
    "ResourceExporter",
    "SUPPORTED_FORMATS",
    "open_writer",
    "sanitize_cell",
]
