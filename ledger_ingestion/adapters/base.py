"""
Source adapters -- turn an export file into one dict per record.

Contract:
    ``read()`` yields records in file order, keyed by header name, with
    blank lines skipped.  ``preview()`` reports the detected header, the
    record count and the first few records.

Brokerage exports are not clean tables: Fidelity prints account details
above the header and a disclaimer below the data.  ``TabularSourceAdapter``
finds the header by keyword score and leaves footer lines in the stream
for the import service, which drops anything that does not map to a dated
row.

Architecture: ledger_ingestion/adapters.  File I/O only, no DB access.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from itertools import chain, islice
from pathlib import Path
from typing import Any, Iterator, Protocol, runtime_checkable

SAMPLE_SIZE = 5
HEADER_SEARCH_LINES = 15


@runtime_checkable
class SourceAdapter(Protocol):
    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        ...

    def preview(self, source_path: Path, options: dict[str, Any]) -> "SourcePreview":
        ...


@dataclass(frozen=True)
class SourcePreview:
    """Snapshot of a source file.  ``header_row`` counts skipped rows too."""

    row_count: int
    columns: tuple[str, ...]
    sample_rows: tuple[dict[str, Any], ...]
    encoding: str | None = None
    detected_delimiter: str | None = None
    header_row: int = 0


# Column names that mark a header line.
HEADER_KEYWORDS = frozenset({
    "date", "run date", "transaction date", "trade date", "timestamp",
    "action", "transaction type", "type",
    "symbol", "asset", "currency",
    "quantity", "quantity transacted", "shares",
    "price", "price ($)",
    "amount", "amount ($)", "value",
    "balance", "cash balance", "cash balance ($)",
    "description", "settlement date",
})


def normalize_header(value: Any) -> str:
    if value is None:
        return ""
    return " ".join(str(value).split())


def header_score(cells: list[Any]) -> int:
    """Distinct header keywords in a line."""
    return len({normalize_header(c).lower() for c in cells} & HEADER_KEYWORDS)


def detect_header_index(lines: list[list[Any]], max_search: int = HEADER_SEARCH_LINES, min_keywords: int = 2) -> int:
    """Index of the first line scoring ``min_keywords`` or more; 0 when none does."""
    for index, cells in enumerate(lines[:max_search]):
        if header_score(cells) >= min_keywords:
            return index
    return 0


def dedupe_headers(cells: list[Any]) -> list[str]:
    """Column names: blanks become ``Column_N``, repeats get ``_1``, ``_2``..."""
    names = [normalize_header(c) for c in cells]
    while names and not names[-1]:
        names.pop()

    headers: list[str] = []
    for position, name in enumerate(names, start=1):
        base = name or f"Column_{position}"
        candidate, n = base, 0
        while candidate in headers:
            n += 1
            candidate = f"{base}_{n}"
        headers.append(candidate)
    return headers


class TabularSourceAdapter(ABC):
    """
    Header detection and record assembly shared by line-oriented formats.

    Subclasses produce cleaned cell lines after ``skip_rows``; blank cells
    are ``""``.  Options handled here:

      auto_detect_header: search the first lines for a header (default true)
      header_row: fixed 0-based header line, used when auto-detect is off
      skip_rows: lines dropped before anything else (subclass applies it)
    """

    @abstractmethod
    def _lines(self, source_path: Path, options: dict[str, Any]) -> Iterator[list[Any]]:
        ...

    def _preview_details(self, options: dict[str, Any]) -> dict[str, Any]:
        return {}

    def _split(self, source_path: Path, options: dict[str, Any]) -> tuple[int, list[str], Iterator[list[Any]]]:
        lines = self._lines(source_path, options)
        head = list(islice(lines, HEADER_SEARCH_LINES))
        if not head:
            return 0, [], iter(())
        if options.get("auto_detect_header", True):
            index = detect_header_index(head)
        else:
            index = int(options.get("header_row") or 0)
        return index, dedupe_headers(head[index]), chain(head[index + 1:], lines)

    def read(self, source_path: Path, options: dict[str, Any]) -> Iterator[dict[str, Any]]:
        _, headers, body = self._split(source_path, options)
        for line in body:
            if any(cell != "" for cell in line):
                yield dict(zip(headers, line))

    def preview(self, source_path: Path, options: dict[str, Any]) -> SourcePreview:
        index, headers, body = self._split(source_path, options)
        sample: list[dict[str, Any]] = []
        count = 0
        for line in body:
            if not any(cell != "" for cell in line):
                continue
            count += 1
            if len(sample) < SAMPLE_SIZE:
                sample.append(dict(zip(headers, line)))
        return SourcePreview(
            row_count=count,
            columns=tuple(headers),
            sample_rows=tuple(sample),
            header_row=index + int(options.get("skip_rows", 0)),
            **self._preview_details(options),
        )
