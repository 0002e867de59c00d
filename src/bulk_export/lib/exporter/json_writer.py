"""JSON export writer."""

import json
import uuid
from collections.abc import Sequence
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any

from bulk_export.lib.exporter.base import BaseWriter


class _JSONEncoder(json.JSONEncoder):
    """Custom encoder handling UUIDs, dates, and decimals."""

    def default(self, o: object) -> Any:
        if isinstance(o, uuid.UUID):
            return str(o)
        if isinstance(o, datetime | date):
            return o.isoformat()
        if isinstance(o, Decimal):
            return str(o)
        return super().default(o)


class JsonWriter(BaseWriter):
    """Streams records into a JSON array without holding them in memory.

    When columns are given, each record is projected onto them.
    """

    def __init__(self, output_path: Path, columns: Sequence[str] | None = None) -> None:
        super().__init__(output_path, columns)
        self._project = bool(columns)
        self._file = output_path.open("w", encoding="utf-8")
        self._file.write("[")

    def _write_rows(self, columns: list[str], rows: list[dict[str, Any]]) -> None:
        for index, record in enumerate(rows):
            if self.count or index:
                self._file.write(",")
            self._file.write("\n")
            if self._project:
                record = {col: record.get(col) for col in columns}
            json.dump(record, self._file, cls=_JSONEncoder, indent=2)

    def _finish(self, columns: list[str]) -> None:
        self._file.write("\n]\n")
        self._file.close()
