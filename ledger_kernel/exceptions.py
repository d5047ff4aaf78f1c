"""
Typed exception hierarchy for the reconciling ledger.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers decide between "skip this unit", "mark this investigation
unresolved", "roll back this delta" and "abort the run" by exception TYPE,
never by parsing messages. Every exception carries:

  1. A ``code`` class attribute (machine-readable, log-safe).
  2. Structured attributes locating the offending row, date or id.

The structured formatter in ``logging_config`` copies those attributes into
the JSON log record as ``exc_<name>`` fields.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    LedgerError (base)
    |
    +-- IngestionError
    |   +-- UnsupportedSourceError
    |   +-- FieldMappingError
    |
    +-- ConstructionError                  (per unit, non-fatal)
    |   +-- NoPrimaryRowError
    |   +-- MissingDateError
    |   +-- InvalidQuantityError
    |   +-- MissingSymbolError
    |   +-- InvalidAmountError
    |   +-- UnbalancedTransactionError
    |   +-- InsufficientLegsError
    |
    +-- AssetError
    |   +-- InvalidSymbolError
    |   +-- AliasConflictError
    |
    +-- DeltaError                         (per delta, rolled back)
    |   +-- InvalidDeltaError
    |   +-- TransactionNotFoundError
    |   +-- DeltaApplicationError
    |
    +-- OracleError                        (per investigation, non-fatal)
    |   +-- OracleTimeoutError
    |
    +-- ReconciliationError
    |   +-- ReconciliationInProgressError
    |   +-- ReconciliationAbortedError     (fatal to the run)
    |   +-- InvariantViolationError
    |   +-- StorageError
    |   +-- FixNotFoundError
    |
    +-- ConfigError
        +-- InstitutionProfileNotFoundError

===============================================================================
FATALITY TABLE
===============================================================================

Family              | Scope           | Handling
--------------------|-----------------|---------------------------------------
ConstructionError   | one unit        | SkippedUnit record, batch continues
DeltaError          | one delta       | SAVEPOINT rollback, fix not applied
OracleError         | one discrepancy | investigation left unresolved
StorageError        | whole run       | ReconciliationAbortedError
InvariantViolation  | whole run       | ReconciliationAbortedError
"""

from datetime import date
from decimal import Decimal


class LedgerError(Exception):
    """Base exception for all ledger errors."""

    code: str = "LEDGER_ERROR"


# ---------------------------------------------------------------------------
# Ingestion
# ---------------------------------------------------------------------------


class IngestionError(LedgerError):
    """Base exception for row ingestion failures."""

    code: str = "INGESTION_ERROR"


class UnsupportedSourceError(IngestionError):
    """No adapter is registered for the requested source format."""

    code: str = "UNSUPPORTED_SOURCE"

    def __init__(self, source_format: str):
        self.source_format = source_format
        super().__init__(f"No source adapter for format: {source_format}")


class FieldMappingError(IngestionError):
    """Required columns could not be mapped from the source headers."""

    code: str = "FIELD_MAPPING_ERROR"

    def __init__(self, missing_fields: tuple[str, ...], headers: tuple[str, ...]):
        self.missing_fields = missing_fields
        self.headers = headers
        super().__init__(
            f"Could not map required fields {list(missing_fields)} "
            f"from headers {list(headers)}"
        )


# ---------------------------------------------------------------------------
# Construction (per TransactionUnit)
# ---------------------------------------------------------------------------


class ConstructionError(LedgerError):
    """
    A transaction unit could not be turned into a balanced transaction.

    Always per-unit: the construction service records a SkippedUnit and
    moves on to the next unit.
    """

    code: str = "CONSTRUCTION_ERROR"

    def __init__(self, message: str, row_ordinals: tuple[int, ...] = ()):
        self.row_ordinals = row_ordinals
        super().__init__(message)


class NoPrimaryRowError(ConstructionError):
    """The unit holds only settlement rows."""

    code: str = "NO_PRIMARY_ROW"

    def __init__(self, row_ordinals: tuple[int, ...]):
        super().__init__(
            f"Transaction unit has no primary row (rows {list(row_ordinals)})",
            row_ordinals,
        )


class MissingDateError(ConstructionError):
    """The primary row carries no parseable date."""

    code: str = "MISSING_DATE"

    def __init__(self, row_ordinal: int):
        self.row_ordinal = row_ordinal
        super().__init__(f"Row {row_ordinal} has no date", (row_ordinal,))


class InvalidQuantityError(ConstructionError):
    """A rule that moves an asset needs a positive quantity."""

    code: str = "INVALID_QUANTITY"

    def __init__(
        self, row_ordinal: int, quantity: Decimal | None, action: str
    ):
        self.row_ordinal = row_ordinal
        self.quantity = quantity
        self.action = action
        super().__init__(
            f"Row {row_ordinal} ({action!r}) has invalid quantity {quantity}",
            (row_ordinal,),
        )


class MissingSymbolError(ConstructionError):
    """A rule that moves an asset found no symbol on the primary row."""

    code: str = "MISSING_SYMBOL"

    def __init__(self, row_ordinal: int, action: str):
        self.row_ordinal = row_ordinal
        self.action = action
        super().__init__(
            f"Row {row_ordinal} ({action!r}) needs an asset symbol",
            (row_ordinal,),
        )


class InvalidAmountError(ConstructionError):
    """The primary row has no usable amount."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, row_ordinal: int, amount: Decimal | None, action: str):
        self.row_ordinal = row_ordinal
        self.amount = amount
        self.action = action
        super().__init__(
            f"Row {row_ordinal} ({action!r}) has invalid amount {amount}",
            (row_ordinal,),
        )


class UnbalancedTransactionError(ConstructionError):
    """Debits and credits differ by more than floating-point noise."""

    code: str = "UNBALANCED_TRANSACTION"

    def __init__(
        self,
        total_debits: Decimal,
        total_credits: Decimal,
        row_ordinals: tuple[int, ...] = (),
        transaction_date: date | None = None,
    ):
        self.total_debits = total_debits
        self.total_credits = total_credits
        self.transaction_date = transaction_date
        super().__init__(
            f"Transaction unbalanced: debits={total_debits}, "
            f"credits={total_credits} (rows {list(row_ordinals)})",
            row_ordinals,
        )


class InsufficientLegsError(ConstructionError):
    """A transaction needs at least two journal entries."""

    code: str = "INSUFFICIENT_LEGS"

    def __init__(self, leg_count: int, row_ordinals: tuple[int, ...] = ()):
        self.leg_count = leg_count
        super().__init__(
            f"Transaction has {leg_count} leg(s); at least 2 required",
            row_ordinals,
        )


# ---------------------------------------------------------------------------
# Assets
# ---------------------------------------------------------------------------


class AssetError(LedgerError):
    """Base exception for asset identity errors."""

    code: str = "ASSET_ERROR"


class InvalidSymbolError(AssetError):
    """Symbol is empty after normalization."""

    code: str = "INVALID_SYMBOL"

    def __init__(self, symbol: str):
        self.symbol = symbol
        super().__init__(f"Invalid asset symbol: {symbol!r}")


class AliasConflictError(AssetError):
    """An alias is already registered to a different canonical symbol."""

    code: str = "ALIAS_CONFLICT"

    def __init__(
        self, institution: str, alias: str, existing: str, requested: str
    ):
        self.institution = institution
        self.alias = alias
        self.existing = existing
        self.requested = requested
        super().__init__(
            f"Alias {alias!r} for {institution} already maps to {existing}, "
            f"cannot remap to {requested}"
        )


# ---------------------------------------------------------------------------
# Deltas
# ---------------------------------------------------------------------------


class DeltaError(LedgerError):
    """Base exception for delta application failures (rolled back per delta)."""

    code: str = "DELTA_ERROR"


class InvalidDeltaError(DeltaError):
    """Delta is structurally invalid (missing payload, unknown action...)."""

    code: str = "INVALID_DELTA"

    def __init__(self, reason: str, delta_id: str | None = None):
        self.reason = reason
        self.delta_id = delta_id
        super().__init__(f"Invalid delta {delta_id or ''}: {reason}".strip())


class TransactionNotFoundError(DeltaError):
    """The delta references a transaction that does not exist."""

    code: str = "TRANSACTION_NOT_FOUND"

    def __init__(self, transaction_id: str):
        self.transaction_id = str(transaction_id)
        super().__init__(f"Transaction not found: {transaction_id}")


class DeltaApplicationError(DeltaError):
    """Applying a delta failed; the delta's savepoint was rolled back."""

    code: str = "DELTA_APPLICATION_FAILED"

    def __init__(self, delta_id: str, action: str, reason: str):
        self.delta_id = delta_id
        self.action = action
        self.reason = reason
        super().__init__(f"Delta {delta_id} ({action}) failed: {reason}")


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------


class OracleError(LedgerError):
    """Base exception for investigation oracle failures."""

    code: str = "ORACLE_ERROR"


class OracleTimeoutError(OracleError):
    """The oracle did not answer within the configured timeout."""

    code: str = "ORACLE_TIMEOUT"

    def __init__(self, discrepancy_id: str, timeout_seconds: float):
        self.discrepancy_id = discrepancy_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Oracle timed out after {timeout_seconds}s "
            f"for discrepancy {discrepancy_id}"
        )


# ---------------------------------------------------------------------------
# Reconciliation runs
# ---------------------------------------------------------------------------


class ReconciliationError(LedgerError):
    """Base exception for reconciliation run errors."""

    code: str = "RECONCILIATION_ERROR"


class ReconciliationInProgressError(ReconciliationError):
    """Another run already holds the account lock."""

    code: str = "RECONCILIATION_IN_PROGRESS"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Reconciliation already running for {account_id}")


class ReconciliationAbortedError(ReconciliationError):
    """The run hit a storage failure or an invariant it cannot undo."""

    code: str = "RECONCILIATION_ABORTED"

    def __init__(self, account_id: str, run_id: str, reason: str):
        self.account_id = account_id
        self.run_id = run_id
        self.reason = reason
        super().__init__(
            f"Reconciliation run {run_id} for {account_id} aborted: {reason}"
        )


class InvariantViolationError(ReconciliationError):
    """A ledger invariant failed after a mutation and could not be undone."""

    code: str = "INVARIANT_VIOLATION"

    def __init__(self, invariant: str, detail: str):
        self.invariant = invariant
        self.detail = detail
        super().__init__(f"Invariant {invariant} violated: {detail}")


class StorageError(ReconciliationError):
    """The backing store failed in a way the run cannot recover from."""

    code: str = "STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"Storage failure during {operation}: {detail}")


class FixNotFoundError(ReconciliationError):
    """approve_fix() referenced an unknown investigation or fix index."""

    code: str = "FIX_NOT_FOUND"

    def __init__(self, investigation_id: str, fix_index: int):
        self.investigation_id = str(investigation_id)
        self.fix_index = fix_index
        super().__init__(
            f"No pending fix {fix_index} on investigation {investigation_id}"
        )


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigError(LedgerError):
    """Base exception for institution configuration errors."""

    code: str = "CONFIG_ERROR"


class InstitutionProfileNotFoundError(ConfigError):
    """No YAML profile exists for the requested institution."""

    code: str = "INSTITUTION_PROFILE_NOT_FOUND"

    def __init__(self, name: str, config_dir: str):
        self.name = name
        self.config_dir = config_dir
        super().__init__(
            f"No institution profile named {name!r} in {config_dir}"
        )
