"""
Profile loader (``ledger_config.loader``).

Responsibility
--------------
Loads institution profile YAML files and parses them into the frozen
dataclasses of ``ledger_config.schema``.  Callers go through
``ledger_config.get_institution_profile()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
* Out-of-range values  -> ``ValueError`` from the schema dataclasses.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import FieldMappingDef, InstitutionProfile, ReconciliationSettings


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; identical data, identical hash."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def parse_field_mapping(data: dict[str, Any] | None) -> FieldMappingDef | None:
    if not data:
        return None
    known = set(FieldMappingDef().as_dict())
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown field_mapping keys: {sorted(unknown)}")
    return FieldMappingDef(**{k: (str(v) if v is not None else None) for k, v in data.items()})


def parse_reconciliation_settings(data: dict[str, Any] | None) -> ReconciliationSettings:
    data = data or {}
    context_days = data.get("context_days")
    return ReconciliationSettings(
        max_rounds=int(data.get("max_rounds", 3)),
        thoroughness=str(data.get("thoroughness", "balanced")),
        context_days=int(context_days) if context_days is not None else None,
        auto_apply_threshold=float(data.get("auto_apply_threshold", 0.95)),
        approval_threshold=float(data.get("approval_threshold", 0.70)),
        oracle_timeout_seconds=float(data.get("oracle_timeout_seconds", 60.0)),
        construction_workers=int(data.get("construction_workers", 4)),
    )


def parse_profile(data: dict[str, Any]) -> InstitutionProfile:
    """
    Parse an ``InstitutionProfile`` from a dict.

    Raises:
        KeyError: if ``name`` is missing.
        ValueError: if an enumerated value or threshold is out of range.
    """
    aliases = data.get("asset_aliases") or {}
    return InstitutionProfile(
        name=data["name"],
        display_name=data.get("display_name", data["name"]),
        settlement_policy=data.get("settlement_policy", "none"),
        balance_instrument=data.get("balance_instrument"),
        balance_date_basis=data.get("balance_date_basis", "trade"),
        field_mapping=parse_field_mapping(data.get("field_mapping")),
        asset_aliases=tuple(sorted((str(k), str(v)) for k, v in aliases.items())),
        reconciliation=parse_reconciliation_settings(data.get("reconciliation")),
        checksum=compute_checksum(data),
    )


def load_profile(path: Path) -> InstitutionProfile:
    return parse_profile(load_yaml_file(path))
