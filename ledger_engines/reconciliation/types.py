"""
Reconciliation domain types.

Pure frozen dataclasses shared by the checkpoint builder, the discrepancy
detector and the reconciliation service.

Architecture: ledger_engines/reconciliation -- pure domain, zero I/O.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from ledger_kernel.domain.values import BALANCE_TOLERANCE, Severity


class BalanceDateBasis(str, Enum):
    """Which date a balance reading and a transaction are compared on."""

    TRADE = "trade"
    SETTLEMENT = "settlement"


class DiscrepancyType(str, Enum):
    BALANCE_MISMATCH = "balance_mismatch"
    UNBALANCED_TRANSACTION = "unbalanced_transaction"
    MISSING_TRANSACTION = "missing_transaction"
    INCORRECT_AMOUNT = "incorrect_amount"


# =============================================================================
# Checkpoints
# =============================================================================


@dataclass(frozen=True)
class BalanceCheckpoint:
    """One ground-truth balance reading paired with the computed balance."""

    row_ordinal: int
    date: date
    ground_truth: Decimal
    computed: Decimal

    @property
    def discrepancy(self) -> Decimal:
        """Ground truth minus computed."""
        return self.ground_truth - self.computed

    @property
    def severity(self) -> Severity:
        return Severity.for_amount(self.discrepancy)

    @property
    def has_discrepancy(self) -> bool:
        return abs(self.discrepancy) > BALANCE_TOLERANCE

    def to_dict(self) -> dict:
        return {
            "row": self.row_ordinal,
            "date": self.date.isoformat(),
            "groundTruth": str(self.ground_truth),
            "computed": str(self.computed),
            "discrepancy": str(self.discrepancy),
            "severity": self.severity.value,
        }


# =============================================================================
# Discrepancies
# =============================================================================


@dataclass(frozen=True)
class Discrepancy:
    """
    A detected problem with its scope.

    ``amount`` is signed: for balance mismatches it is ground truth minus
    computed; for unbalanced transactions debits minus credits.
    """

    discrepancy_type: DiscrepancyType
    amount: Decimal
    severity: Severity
    start_date: date
    end_date: date
    summary: str
    affected_rows: tuple[int, ...] = ()
    affected_transactions: tuple[UUID, ...] = ()
    expected: Decimal | None = None
    actual: Decimal | None = None
    resolved: bool = False

    @property
    def discrepancy_id(self) -> str:
        key = "|".join(
            (
                self.discrepancy_type.value,
                self.start_date.isoformat(),
                self.end_date.isoformat(),
                ",".join(str(r) for r in self.affected_rows),
                str(self.amount),
            )
        )
        return hashlib.sha256(key.encode("utf-8")).hexdigest()[:16]

    @property
    def magnitude(self) -> Decimal:
        return abs(self.amount)

    def to_dict(self) -> dict:
        return {
            "id": self.discrepancy_id,
            "type": self.discrepancy_type.value,
            "severity": self.severity.value,
            "amount": str(self.amount),
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "summary": self.summary,
            "affectedRows": list(self.affected_rows),
            "affectedTransactions": [str(t) for t in self.affected_transactions],
            "expected": str(self.expected) if self.expected is not None else None,
            "actual": str(self.actual) if self.actual is not None else None,
        }


@dataclass(frozen=True)
class ScanResult:
    """Checkpoints and the discrepancies found in them."""

    checkpoints: tuple[BalanceCheckpoint, ...]
    discrepancies: tuple[Discrepancy, ...]

    @property
    def max_discrepancy(self) -> Decimal:
        """Largest absolute checkpoint discrepancy (0 with no checkpoints)."""
        if not self.checkpoints:
            return Decimal("0")
        return max(abs(c.discrepancy) for c in self.checkpoints)

    @property
    def is_clean(self) -> bool:
        return not self.discrepancies
