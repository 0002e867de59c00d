"""Tests for the Excel export writer."""

from pathlib import Path
from unittest.mock import patch

import pytest
from openpyxl import load_workbook

from bulk_export.lib.exporter.excel_writer import ExcelWriter


class TestExcelWriter:
    """Tests for ExcelWriter."""

    def test_writes_header_and_rows(self, tmp_path: Path) -> None:
        output = tmp_path / "test.xlsx"
        with ExcelWriter(output) as writer:
            writer.write_batch([{"id": 1, "donor": "Ada"}])
            writer.write_batch([{"id": 2, "donor": "Grace"}])

        sheet = load_workbook(output).active
        rows = list(sheet.iter_rows(values_only=True))
        assert rows == [("id", "donor"), (1, "Ada"), (2, "Grace")]
        assert sheet["A1"].font.bold

    def test_sheet_title(self, tmp_path: Path) -> None:
        output = tmp_path / "titled.xlsx"
        ExcelWriter(output, columns=["id"], title="Donations").close()
        workbook = load_workbook(output)
        assert workbook.sheetnames == ["Donations"]
        assert list(workbook.active.iter_rows(values_only=True)) == [("id",)]

    def test_sanitizes_formula_cells(self, tmp_path: Path) -> None:
        output = tmp_path / "inject.xlsx"
        with ExcelWriter(output) as writer:
            writer.write_batch([{"note": "=1+1"}])

        sheet = load_workbook(output).active
        assert sheet["A2"].value == "'=1+1"

    def test_row_limit(self, tmp_path: Path) -> None:
        writer = ExcelWriter(tmp_path / "big.xlsx")
        with (
            patch("bulk_export.lib.exporter.excel_writer.EXCEL_MAX_ROWS", 3),
            pytest.raises(ValueError, match="cannot exceed"),
        ):
            writer.write_batch([{"id": i} for i in range(3)])
