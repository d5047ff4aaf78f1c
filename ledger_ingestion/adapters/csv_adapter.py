"""
CSV source adapter.

Options: ``delimiter`` (default ","), ``encoding`` (default utf-8, read as
utf-8-sig so an Excel BOM never reaches the first header), ``quoting``
(name or csv constant), ``skip_rows``, plus the header options of
``TabularSourceAdapter``.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any, Iterator

from ledger_ingestion.adapters.base import TabularSourceAdapter

_QUOTING_BY_NAME = {
    "minimal": csv.QUOTE_MINIMAL,
    "all": csv.QUOTE_ALL,
    "nonnumeric": csv.QUOTE_NONNUMERIC,
    "none": csv.QUOTE_NONE,
}


def _encoding(options: dict[str, Any]) -> str:
    requested = options.get("encoding", "utf-8")
    return "utf-8-sig" if requested.lower() in ("utf-8", "utf8") else requested


def _quoting(options: dict[str, Any]) -> int:
    quoting = options.get("quoting", "minimal")
    if isinstance(quoting, int):
        return quoting
    return _QUOTING_BY_NAME.get(str(quoting).lower(), csv.QUOTE_MINIMAL)


class CsvSourceAdapter(TabularSourceAdapter):
    def _lines(self, source_path: Path, options: dict[str, Any]) -> Iterator[list[Any]]:
        with source_path.open("r", encoding=_encoding(options), newline="") as handle:
            # Preamble lines may not even be valid CSV, so skip them as text.
            for _ in range(int(options.get("skip_rows", 0))):
                if not handle.readline():
                    return
            reader = csv.reader(
                handle,
                delimiter=options.get("delimiter", ","),
                quoting=_quoting(options),
            )
            for cells in reader:
                yield [str(cell).strip() for cell in cells]

    def _preview_details(self, options: dict[str, Any]) -> dict[str, Any]:
        return {
            "encoding": _encoding(options),
            "detected_delimiter": options.get("delimiter", ","),
        }
