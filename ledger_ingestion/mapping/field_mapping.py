"""
Field mapping -- which raw column denotes each standardized field.

Responsibility:
    Per-account configuration naming the raw columns for date, action,
    symbol, quantity, amount, price, settlement date, balance and
    description, plus presets for known institutions and auto-detection by
    ranked substring match against known header aliases.

Architecture position:
    Ingestion > Mapping -- pure, zero I/O.

Invariants enforced:
    - A raw column is claimed by at most one standardized field.
    - Aliases are tried in rank order; within one alias an exact
      (case-insensitive) header match beats a substring match.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import Sequence

from ledger_kernel.exceptions import FieldMappingError
from ledger_kernel.logging_config import get_logger

logger = get_logger("ingestion.field_mapping")

REQUIRED_FIELDS = ("date", "amount")


@dataclass(frozen=True)
class FieldMapping:
    """Raw column name per standardized field; None when the export lacks it."""

    date: str | None = None
    action: str | None = None
    amount: str | None = None
    balance: str | None = None
    symbol: str | None = None
    quantity: str | None = None
    price: str | None = None
    description: str | None = None
    settlement_date: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}

    def missing(self, headers: Sequence[str]) -> tuple[str, ...]:
        """Required fields that are unmapped or name a column not in ``headers``."""
        present = set(headers)
        return tuple(
            name for name in REQUIRED_FIELDS
            if getattr(self, name) is None or getattr(self, name) not in present
        )

    def validate(self, headers: Sequence[str]) -> "FieldMapping":
        missing = self.missing(headers)
        if missing:
            raise FieldMappingError(missing, tuple(headers))
        return self


FIDELITY = FieldMapping(
    date="Run Date",
    action="Action",
    amount="Amount ($)",
    balance="Cash Balance ($)",
    symbol="Symbol",
    quantity="Quantity",
    price="Price ($)",
    description="Description",
    settlement_date="Settlement Date",
)

GENERIC = FieldMapping(
    date="Date",
    action="Action",
    amount="Amount",
    balance="Balance",
    symbol="Symbol",
    quantity="Quantity",
    price="Price",
    description="Description",
)

COINBASE = FieldMapping(
    date="Timestamp",
    action="Transaction Type",
    amount="Total (inclusive of fees and/or spread)",
    symbol="Asset",
    quantity="Quantity Transacted",
    price="Price at Transaction",
    description="Notes",
)

PRESETS: dict[str, FieldMapping] = {
    "fidelity": FIDELITY,
    "generic": GENERIC,
    "coinbase": COINBASE,
}


# Detection order matters: specific fields claim their columns before the
# broad "date"/"amount" aliases can swallow them.
_ALIASES: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("settlement_date", ("Settlement Date",)),
    ("balance", ("Cash Balance", "Balance", "Account Balance", "Ending Balance", "Running Balance")),
    ("amount", ("Amount ($)", "Amount", "Transaction Amount", "Total (inclusive", "Value")),
    ("date", ("Run Date", "Date", "Transaction Date", "Trade Date", "Timestamp")),
    ("action", ("Action", "Transaction Type", "Type")),
    ("symbol", ("Symbol", "Asset", "Ticker")),
    ("quantity", ("Quantity", "Shares")),
    ("price", ("Price ($)", "Price at Transaction", "Spot Price", "Price")),
    ("description", ("Description", "Notes", "Memo")),
)


def _find_column(aliases: Sequence[str], headers: Sequence[str], claimed: set[str]) -> str | None:
    for alias in aliases:
        needle = alias.lower()
        for header in headers:
            if header not in claimed and header.strip().lower() == needle:
                return header
        for header in headers:
            if header not in claimed and needle in header.lower():
                return header
    return None


def detect_field_mapping(headers: Sequence[str]) -> FieldMapping:
    """
    Build a FieldMapping from raw headers by ranked alias match.

    Raises:
        FieldMappingError: a required field (date, amount) found no column.
    """
    claimed: set[str] = set()
    found: dict[str, str | None] = {}
    for name, aliases in _ALIASES:
        column = _find_column(aliases, headers, claimed)
        if column is not None:
            claimed.add(column)
        found[name] = column

    mapping = FieldMapping(**found)
    missing = mapping.missing(headers)
    if missing:
        logger.warning(
            "field_mapping_detection_failed",
            extra={"missing_fields": list(missing), "headers": list(headers)},
        )
        raise FieldMappingError(missing, tuple(headers))

    logger.info("field_mapping_detected", extra={"mapping": mapping.as_dict()})
    return mapping


def preset_for(institution: str) -> FieldMapping | None:
    return PRESETS.get((institution or "").strip().lower())
