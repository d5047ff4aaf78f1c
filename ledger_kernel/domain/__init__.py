"""Pure domain types: rows, ledger transactions, assets, values."""

from ledger_kernel.domain.asset_registry import AssetRegistry
from ledger_kernel.domain.assets import Asset, AssetClass, infer_quantity_unit, normalize_symbol
from ledger_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from ledger_kernel.domain.ledger import (
    CASH_ACCOUNT,
    AccountClass,
    JournalLine,
    LedgerTransaction,
    Side,
    TransactionType,
    transaction_id_for,
    validate_lines,
)
from ledger_kernel.domain.rows import MappedRow, SourceRow
from ledger_kernel.domain.values import (
    BALANCE_TOLERANCE,
    NOISE_EPSILON,
    Severity,
    parse_date,
    parse_decimal,
    round_money,
)

__all__ = [
    "Asset",
    "AssetClass",
    "AssetRegistry",
    "AccountClass",
    "BALANCE_TOLERANCE",
    "CASH_ACCOUNT",
    "Clock",
    "DeterministicClock",
    "JournalLine",
    "LedgerTransaction",
    "MappedRow",
    "NOISE_EPSILON",
    "Severity",
    "Side",
    "SourceRow",
    "SystemClock",
    "TransactionType",
    "infer_quantity_unit",
    "normalize_symbol",
    "parse_date",
    "parse_decimal",
    "round_money",
    "transaction_id_for",
    "validate_lines",
]
