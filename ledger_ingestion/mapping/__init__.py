"""Field mapping presets, auto-detection and the raw -> typed mapping engine."""

from ledger_ingestion.mapping.engine import is_data_row, map_record
from ledger_ingestion.mapping.field_mapping import (
    COINBASE,
    FIDELITY,
    GENERIC,
    PRESETS,
    FieldMapping,
    detect_field_mapping,
    preset_for,
)

__all__ = [
    "COINBASE",
    "FIDELITY",
    "GENERIC",
    "PRESETS",
    "FieldMapping",
    "detect_field_mapping",
    "is_data_row",
    "map_record",
    "preset_for",
]
