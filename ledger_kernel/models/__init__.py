"""ORM models.  Importing this package registers every ledger table."""

from ledger_kernel.models.ledger import (
    AssetModel,
    ExcludedRowModel,
    JournalEntryModel,
    SourceRowModel,
    TransactionModel,
)
from ledger_kernel.models.reconciliation import (
    AppliedDeltaModel,
    InvestigationModel,
    InvestigationStatus,
    ReconciliationRunModel,
    RunStatus,
)

__all__ = [
    "AppliedDeltaModel",
    "AssetModel",
    "ExcludedRowModel",
    "InvestigationModel",
    "InvestigationStatus",
    "JournalEntryModel",
    "ReconciliationRunModel",
    "RunStatus",
    "SourceRowModel",
    "TransactionModel",
]
