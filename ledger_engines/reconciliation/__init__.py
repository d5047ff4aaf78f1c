"""Balance checkpoints and discrepancy detection."""

from ledger_engines.reconciliation.checkpoints import CheckpointBuilder, build_checkpoints
from ledger_engines.reconciliation.detector import DiscrepancyDetector, scan
from ledger_engines.reconciliation.types import (
    BalanceCheckpoint,
    BalanceDateBasis,
    Discrepancy,
    DiscrepancyType,
    ScanResult,
)

__all__ = [
    "BalanceCheckpoint",
    "BalanceDateBasis",
    "CheckpointBuilder",
    "Discrepancy",
    "DiscrepancyDetector",
    "DiscrepancyType",
    "ScanResult",
    "build_checkpoints",
    "scan",
]
