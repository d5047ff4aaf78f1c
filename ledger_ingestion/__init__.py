"""
Row ingestion: export files to ordered, typed ``SourceRow`` batches.

Adapters read CSV/XLSX exports, institution detection picks a field-mapping
preset (or the mapping is auto-detected from headers), and the mapping
engine populates one ``MappedRow`` per record.  No database access.
"""

from ledger_ingestion.adapters import CsvSourceAdapter, XlsxSourceAdapter, get_adapter
from ledger_ingestion.institution import (
    DetectionConfidence,
    DetectionResult,
    Institution,
    detect_institution,
)
from ledger_ingestion.mapping import FieldMapping, detect_field_mapping, map_record
from ledger_ingestion.services import ImportResult, ImportService

__all__ = [
    "CsvSourceAdapter",
    "DetectionConfidence",
    "DetectionResult",
    "FieldMapping",
    "ImportResult",
    "ImportService",
    "Institution",
    "XlsxSourceAdapter",
    "detect_field_mapping",
    "detect_institution",
    "get_adapter",
    "map_record",
]
