"""
Investigation domain types.

Frozen dataclasses for the oracle boundary: what the core sends (an
``OracleRequest`` with its ``ContextWindow``) and what it accepts back
(``InvestigationFindings`` holding ranked ``ProposedFix`` records).

Architecture: ledger_engines/investigation -- pure domain, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum

from ledger_engines.correction.delta import TransactionDelta
from ledger_engines.reconciliation.types import BalanceCheckpoint, Discrepancy
from ledger_kernel.domain.ledger import LedgerTransaction
from ledger_kernel.domain.rows import SourceRow


class Thoroughness(str, Enum):
    """How wide a context window the oracle gets around a discrepancy."""

    QUICK = "quick"
    BALANCED = "balanced"
    THOROUGH = "thorough"

    @property
    def context_days(self) -> int:
        return {"quick": 3, "balanced": 7, "thorough": 14}[self.value]


# =============================================================================
# Oracle output
# =============================================================================


@dataclass(frozen=True)
class FixImpact:
    """The oracle's prediction of what a fix does."""

    balance_change: Decimal | None = None
    transactions_created: int = 0
    transactions_modified: int = 0
    transactions_deleted: int = 0
    checkpoints_resolved: int = 0
    risk_note: str = ""

    def to_dict(self) -> dict:
        return {
            "balanceChange": str(self.balance_change) if self.balance_change is not None else None,
            "transactionsCreated": self.transactions_created,
            "transactionsModified": self.transactions_modified,
            "transactionsDeleted": self.transactions_deleted,
            "checkpointsResolved": self.checkpoints_resolved,
            "newDiscrepanciesRisk": self.risk_note,
        }


@dataclass(frozen=True)
class ProposedFix:
    """One candidate correction.  ``confidence`` is in [0, 1]."""

    description: str
    confidence: float
    deltas: tuple[TransactionDelta, ...]
    reasoning: str = ""
    impact: FixImpact = field(default_factory=FixImpact)
    supporting_evidence: tuple[str, ...] = ()
    assumptions: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not 0.0 <= self.confidence <= 1.0:
            raise ValueError(f"confidence must be in [0, 1], got {self.confidence}")

    def to_dict(self) -> dict:
        return {
            "description": self.description,
            "confidence": self.confidence,
            "reasoning": self.reasoning,
            "deltas": [d.to_dict() for d in self.deltas],
            "impact": self.impact.to_dict(),
            "supportingEvidence": list(self.supporting_evidence),
            "assumptions": list(self.assumptions),
        }


@dataclass(frozen=True)
class InvestigationFindings:
    """Everything one oracle call returned."""

    hypothesis: str = ""
    evidence_analysis: str = ""
    fixes: tuple[ProposedFix, ...] = ()
    uncertainties: tuple[str, ...] = ()
    needs_more_data: bool = False

    @classmethod
    def empty(cls, reason: str = "") -> "InvestigationFindings":
        return cls(uncertainties=(reason,) if reason else ())


# =============================================================================
# Oracle input
# =============================================================================


@dataclass(frozen=True)
class ContextWindow:
    """Rows, transactions and balance series within +-N days of a discrepancy."""

    start_date: date
    end_date: date
    rows: tuple[SourceRow, ...] = ()
    transactions: tuple[LedgerTransaction, ...] = ()
    balance_series: tuple[BalanceCheckpoint, ...] = ()

    def to_dict(self) -> dict:
        return {
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "rows": [r.to_context_dict() for r in self.rows],
            "transactions": [_transaction_dict(t) for t in self.transactions],
            "balanceSeries": [c.to_dict() for c in self.balance_series],
        }


@dataclass(frozen=True)
class OracleRequest:
    account_id: str
    discrepancy: Discrepancy
    context: ContextWindow
    thoroughness: Thoroughness = Thoroughness.BALANCED

    def to_dict(self) -> dict:
        return {
            "accountId": self.account_id,
            "discrepancy": self.discrepancy.to_dict(),
            "context": self.context.to_dict(),
            "thoroughness": self.thoroughness.value,
        }


def _transaction_dict(txn: LedgerTransaction) -> dict:
    return {
        "id": str(txn.id),
        "date": txn.date.isoformat(),
        "description": txn.description,
        "transactionType": txn.transaction_type.value,
        "sourceRows": list(txn.source_rows),
        "balanced": abs(txn.imbalance) < Decimal("0.01"),
        "journalEntries": [
            {
                "type": ln.side.value,
                "accountType": ln.account_class.value,
                "accountName": ln.account_name,
                "amount": str(ln.amount),
                "quantity": str(ln.quantity) if ln.quantity is not None else None,
            }
            for ln in txn.lines
        ],
    }
