"""Ledger edit value objects."""

from ledger_engines.correction.delta import (
    DeltaAction,
    EntryPayload,
    TransactionDelta,
    TransactionPayload,
)

__all__ = ["DeltaAction", "EntryPayload", "TransactionDelta", "TransactionPayload"]
