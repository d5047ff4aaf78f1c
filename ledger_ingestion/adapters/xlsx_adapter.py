"""
XLSX source adapter for exports saved from a spreadsheet.

Options: ``sheet`` (0-based index or name; default the active sheet),
``skip_rows``, plus the header options of ``TabularSourceAdapter``.

Cells come out the way the CSV adapter would show them, so the mapping
engine parses both formats the same way.  Numbers become their displayed
digits, never a float repr with binary noise.  Datetimes become dates.
"""

from __future__ import annotations

from datetime import date, datetime
from pathlib import Path
from typing import Any, Iterator

import openpyxl

from ledger_ingestion.adapters.base import TabularSourceAdapter


def cell_text(value: Any) -> Any:
    """Normalize one openpyxl cell value; dates stay typed, blanks are ``""``."""
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, bool):
        return str(value).upper()
    if isinstance(value, float):
        return str(int(value)) if value.is_integer() else repr(value)
    return str(value).strip()


class XlsxSourceAdapter(TabularSourceAdapter):
    @staticmethod
    def _worksheet(workbook: Any, sheet: int | str | None) -> Any:
        if sheet is None:
            return workbook.active
        if isinstance(sheet, int):
            return workbook.worksheets[sheet]
        return workbook[sheet]

    def _lines(self, source_path: Path, options: dict[str, Any]) -> Iterator[list[Any]]:
        workbook = openpyxl.load_workbook(source_path, read_only=True, data_only=True)
        try:
            worksheet = self._worksheet(workbook, options.get("sheet"))
            first = 1 + int(options.get("skip_rows", 0))
            for values in worksheet.iter_rows(min_row=first, values_only=True):
                yield [cell_text(v) for v in values]
        finally:
            workbook.close()
