"""Excel (xlsx) export writer using openpyxl write-only mode."""

import uuid
from collections.abc import Sequence
from datetime import UTC, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from openpyxl import Workbook
from openpyxl.cell import WriteOnlyCell
from openpyxl.styles import Font

from bulk_export.lib.exporter.base import BaseWriter, sanitize_cell

# Hard row limit of the xlsx format, header row included
EXCEL_MAX_ROWS = 1_048_576


def _excel_value(value: Any) -> Any:
    """Coerce a record value into something openpyxl can store."""
    if value is None or isinstance(value, bool | int | float | str):
        return sanitize_cell(value)
    if isinstance(value, datetime):
        # Excel has no timezone support
        return value.astimezone(UTC).replace(tzinfo=None) if value.tzinfo else value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    return sanitize_cell(str(value))


class ExcelWriter(BaseWriter):
    """Streams records into a single-sheet workbook.

    Rows are appended in write-only mode so memory stays flat; the file is
    only materialised on close.
    """

    def __init__(self, output_path: Path, columns: Sequence[str] | None = None, *, title: str = "Export") -> None:
        super().__init__(output_path, columns)
        self._workbook = Workbook(write_only=True)
        self._sheet = self._workbook.create_sheet(title=title)
        self._header_written = False

    def _write_header(self, columns: list[str]) -> None:
        if self._header_written:
            return
        bold = Font(bold=True)
        cells = []
        for name in columns:
            cell = WriteOnlyCell(self._sheet, value=name)
            cell.font = bold
            cells.append(cell)
        if cells:
            self._sheet.append(cells)
        self._header_written = True

    def _write_rows(self, columns: list[str], rows: list[dict[str, Any]]) -> None:
        if self.count + len(rows) + 1 > EXCEL_MAX_ROWS:
            msg = f"Excel exports cannot exceed {EXCEL_MAX_ROWS - 1:,} records. Use CSV for larger datasets."
            raise ValueError(msg)
        self._write_header(columns)
        for record in rows:
            self._sheet.append([_excel_value(record.get(col)) for col in columns])

    def _finish(self, columns: list[str]) -> None:
        self._write_header(columns)
        self._workbook.save(self.output_path)
