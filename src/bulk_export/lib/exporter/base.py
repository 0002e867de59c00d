"""Streaming writer protocol shared by the format-specific writers."""

from collections.abc import Iterable, Sequence
from pathlib import Path
from types import TracebackType
from typing import Any, Protocol, Self

# Characters that trigger formula execution in spreadsheet applications
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")


def sanitize_cell(value: object) -> object:
    """Sanitize a cell value to prevent spreadsheet formula injection.

    Prefixes values starting with formula-triggering characters with
    a single quote to prevent execution in spreadsheet applications.

    Args:
        value: The cell value to sanitize.

    Returns:
        The sanitized value.
    """
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


class ExportWriter(Protocol):
    """Incremental writer fed one batch of records at a time."""

    output_path: Path

    def write_batch(self, rows: Iterable[dict[str, Any]]) -> int:
        """Append rows and return how many were written."""
        ...

    def close(self) -> int:
        """Flush and close the file; return the total record count."""
        ...


class BaseWriter:
    """Bookkeeping shared by the concrete writers.

    Columns may be fixed up front or inferred from the first batch.
    """

    def __init__(self, output_path: Path, columns: Sequence[str] | None = None) -> None:
        self.output_path = output_path
        self.columns: list[str] | None = list(columns) if columns else None
        self.count = 0
        self._closed = False

    def _resolve_columns(self, rows: list[dict[str, Any]]) -> list[str]:
        if self.columns is None:
            self.columns = list(rows[0].keys()) if rows else []
        return self.columns

    def write_batch(self, rows: Iterable[dict[str, Any]]) -> int:
        batch = list(rows)
        if not batch:
            return 0
        self._write_rows(self._resolve_columns(batch), batch)
        self.count += len(batch)
        return len(batch)

    def close(self) -> int:
        if not self._closed:
            self._finish(self._resolve_columns([]))
            self._closed = True
        return self.count

    def _write_rows(self, columns: list[str], rows: list[dict[str, Any]]) -> None:
        raise NotImplementedError

    def _finish(self, columns: list[str]) -> None:
        raise NotImplementedError

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
