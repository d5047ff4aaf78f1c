"""Source adapters for export ingestion (file I/O only, no DB)."""

from ledger_ingestion.adapters.base import SourceAdapter, SourcePreview, TabularSourceAdapter
from ledger_ingestion.adapters.csv_adapter import CsvSourceAdapter
from ledger_ingestion.adapters.xlsx_adapter import XlsxSourceAdapter
from ledger_kernel.exceptions import UnsupportedSourceError


def default_adapters() -> dict[str, SourceAdapter]:
    return {
        "csv": CsvSourceAdapter(),
        "xlsx": XlsxSourceAdapter(),
    }


def get_adapter(source_format: str) -> SourceAdapter:
    """Adapter for ``source_format`` ("csv" or "xlsx")."""
    adapter = default_adapters().get((source_format or "").strip().lower())
    if adapter is None:
        raise UnsupportedSourceError(source_format)
    return adapter


__all__ = [
    "SourceAdapter",
    "SourcePreview",
    "TabularSourceAdapter",
    "CsvSourceAdapter",
    "XlsxSourceAdapter",
    "default_adapters",
    "get_adapter",
]
