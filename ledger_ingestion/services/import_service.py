"""
Import service: read -> detect -> map -> number.

Orchestrates source adapters, institution detection, field mapping and the
mapping engine into an ordered batch of ``SourceRow`` records.  Persisting
the batch is the ledger repository's job; this service touches no database.
Uses structured logging (LogContext, get_logger("ingestion.*")).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping
from uuid import uuid4

from ledger_ingestion.adapters import default_adapters
from ledger_ingestion.adapters.base import SourceAdapter, SourcePreview
from ledger_ingestion.institution import (
    DetectionConfidence,
    DetectionResult,
    Institution,
    detect_institution,
)
from ledger_ingestion.mapping.engine import is_data_row, map_record
from ledger_ingestion.mapping.field_mapping import (
    FieldMapping,
    detect_field_mapping,
    preset_for,
)
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.exceptions import UnsupportedSourceError
from ledger_kernel.logging_config import LogContext, get_logger

logger = get_logger("ingestion.import_service")

_SAMPLE_SIZE = 5


@dataclass(frozen=True)
class ImportResult:
    """One imported batch: ordered rows plus how they were interpreted."""

    batch_id: str
    rows: tuple[SourceRow, ...]
    mapping: FieldMapping
    institution: DetectionResult
    total_records: int = 0
    # File ordinals of footer/disclaimer records that carried no data.
    dropped_records: tuple[int, ...] = field(default_factory=tuple)

    @property
    def next_ordinal(self) -> int:
        return self.rows[-1].global_ordinal + 1 if self.rows else 0


class ImportService:
    """Turns export files or already-read records into SourceRow batches."""

    def __init__(self, adapters: dict[str, SourceAdapter] | None = None):
        self._adapters = adapters if adapters is not None else default_adapters()

    def _adapter(self, source_format: str) -> SourceAdapter:
        adapter = self._adapters.get((source_format or "").strip().lower())
        if adapter is None:
            raise UnsupportedSourceError(source_format)
        return adapter

    def preview_source(
        self, source_path: Path, source_format: str = "csv", options: dict[str, Any] | None = None
    ) -> SourcePreview:
        return self._adapter(source_format).preview(Path(source_path), options or {})

    def read_records(
        self, source_path: Path, source_format: str = "csv", options: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        return list(self._adapter(source_format).read(Path(source_path), options or {}))

    def import_file(
        self,
        source_path: Path,
        source_format: str = "csv",
        mapping: FieldMapping | None = None,
        options: dict[str, Any] | None = None,
        start_ordinal: int = 0,
        batch_id: str | None = None,
    ) -> ImportResult:
        source_path = Path(source_path)
        records = self.read_records(source_path, source_format, options)
        logger.info(
            "source_file_read",
            extra={
                "source_path": str(source_path),
                "source_format": source_format,
                "record_count": len(records),
            },
        )
        return self.import_records(
            records, mapping=mapping, start_ordinal=start_ordinal, batch_id=batch_id
        )

    def import_records(
        self,
        records: Iterable[Mapping[str, Any]],
        mapping: FieldMapping | None = None,
        headers: Iterable[str] | None = None,
        start_ordinal: int = 0,
        batch_id: str | None = None,
    ) -> ImportResult:
        """
        Map and number ``records``.

        Global ordinals continue from ``start_ordinal`` so several files
        can feed one account; file ordinals count every record read,
        including dropped ones, starting at 1.
        """
        records = [dict(r) for r in records]
        batch_id = batch_id or str(uuid4())
        header_list = list(headers) if headers is not None else _headers_of(records)

        with LogContext.bind(batch_id=batch_id):
            detection = detect_institution(header_list, records[:_SAMPLE_SIZE])
            mapping = self._resolve_mapping(mapping, header_list, detection)

            rows: list[SourceRow] = []
            dropped: list[int] = []
            for file_ordinal, raw in enumerate(records, start=1):
                mapped = map_record(raw, mapping)
                if not is_data_row(mapped):
                    dropped.append(file_ordinal)
                    continue
                rows.append(
                    SourceRow(
                        global_ordinal=start_ordinal + len(rows),
                        file_ordinal=file_ordinal,
                        mapped=mapped,
                        raw={k: "" if v is None else str(v) for k, v in raw.items()},
                        batch_id=batch_id,
                    )
                )

            if dropped:
                logger.info(
                    "non_data_records_dropped",
                    extra={"count": len(dropped), "file_ordinals": dropped[:20]},
                )
            logger.info(
                "import_batch_mapped",
                extra={
                    "institution": detection.institution.value,
                    "record_count": len(records),
                    "row_count": len(rows),
                    "first_ordinal": start_ordinal,
                },
            )

        return ImportResult(
            batch_id=batch_id,
            rows=tuple(rows),
            mapping=mapping,
            institution=detection,
            total_records=len(records),
            dropped_records=tuple(dropped),
        )

    def _resolve_mapping(
        self,
        mapping: FieldMapping | None,
        headers: list[str],
        detection: DetectionResult,
    ) -> FieldMapping:
        if mapping is not None:
            return mapping.validate(headers)
        if detection.institution != Institution.UNKNOWN and detection.confidence in (
            DetectionConfidence.HIGH,
            DetectionConfidence.MEDIUM,
        ):
            preset = preset_for(detection.institution.value)
            if preset is not None and not preset.missing(headers):
                logger.info(
                    "field_mapping_preset_used",
                    extra={"institution": detection.institution.value},
                )
                return preset
        return detect_field_mapping(headers)


def _headers_of(records: list[dict[str, Any]]) -> list[str]:
    headers: list[str] = []
    for record in records:
        for key in record:
            if key not in headers:
                headers.append(key)
    return headers
