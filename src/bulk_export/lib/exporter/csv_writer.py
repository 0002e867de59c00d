"""CSV export writer."""

import csv
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from bulk_export.lib.exporter.base import BaseWriter, sanitize_cell


class CsvWriter(BaseWriter):
    """Streams records into a CSV file.

    The header row is written with the first batch (or on close for an
    empty export). Cell values are sanitized against formula injection.

    Args:
        output_path: Path to write the CSV file.
        columns: Column names to include; inferred from the first record
            when omitted. Extra keys in records are ignored.
        include_bom: Prefix the file with a UTF-8 byte order mark so
            spreadsheet applications detect the encoding.
    """

    def __init__(
        self,
        output_path: Path,
        columns: Sequence[str] | None = None,
        *,
        include_bom: bool = True,
    ) -> None:
        super().__init__(output_path, columns)
        encoding = "utf-8-sig" if include_bom else "utf-8"
        self._file = output_path.open("w", newline="", encoding=encoding)
        self._writer: csv.DictWriter | None = None

    def _ensure_writer(self, columns: list[str]) -> csv.DictWriter:
        if self._writer is None:
            self._writer = csv.DictWriter(self._file, fieldnames=columns, extrasaction="ignore")
            if columns:
                self._writer.writeheader()
        return self._writer

    def _write_rows(self, columns: list[str], rows: list[dict[str, Any]]) -> None:
        writer = self._ensure_writer(columns)
        for record in rows:
            writer.writerow({k: sanitize_cell(v) for k, v in record.items()})

    def _finish(self, columns: list[str]) -> None:
        self._ensure_writer(columns)
        self._file.close()
