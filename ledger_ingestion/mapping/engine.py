"""
Mapping engine: pure transformation from a raw record to a ``MappedRow``.

Every raw-column lookup happens here, once.  Downstream code reads the typed
record only.  ZERO I/O.
"""

from __future__ import annotations

from typing import Any, Mapping

from ledger_ingestion.mapping.field_mapping import FieldMapping
from ledger_kernel.domain.rows import MappedRow
from ledger_kernel.domain.values import parse_date, parse_decimal


def _cell(raw: Mapping[str, Any], column: str | None) -> Any:
    if column is None:
        return None
    value = raw.get(column)
    if isinstance(value, str):
        value = value.strip()
    return value


def _text(raw: Mapping[str, Any], column: str | None) -> str:
    value = _cell(raw, column)
    return "" if value is None else str(value)


def map_record(raw: Mapping[str, Any], mapping: FieldMapping) -> MappedRow:
    """Typed view of one raw record.  Unparseable cells become None."""
    return MappedRow(
        date=parse_date(_cell(raw, mapping.date)),
        action=_text(raw, mapping.action),
        symbol=_text(raw, mapping.symbol),
        quantity=parse_decimal(_cell(raw, mapping.quantity)),
        amount=parse_decimal(_cell(raw, mapping.amount)),
        price=parse_decimal(_cell(raw, mapping.price)),
        settlement_date=parse_date(_cell(raw, mapping.settlement_date)),
        balance=parse_decimal(_cell(raw, mapping.balance)),
        description=_text(raw, mapping.description),
    )


def is_data_row(row: MappedRow) -> bool:
    """
    False for footer and disclaimer lines, which carry no parseable date.

    A dated row is data when anything besides the date is filled in.
    Distributions and splits arrive with an action and quantity but no
    amount; they are kept so construction reports them as gaps.
    """
    if row.date is None:
        return False
    return bool(row.action or row.symbol) or any(
        v is not None for v in (row.amount, row.balance, row.quantity)
    )
