"""
DiscrepancyDetector -- Pure engine classifying ledger mismatches.

Detects balance mismatches against ground-truth checkpoints, unbalanced
persisted transactions, a negative opening balance (suspected missing
funding transaction), and transactions whose cash effect disagrees with the
amount on their primary row.

Architecture: ledger_engines -- pure calculation, zero I/O, zero DB access.

Invariants enforced:
    - Consecutive mismatching checkpoints with the same discrepancy are one
      problem, reported once across their date range.
    - Output order is deterministic: by start date, then type, then first
      affected row.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Sequence

from ledger_engines.reconciliation.checkpoints import CheckpointBuilder
from ledger_engines.reconciliation.types import (
    BalanceCheckpoint,
    Discrepancy,
    DiscrepancyType,
    ScanResult,
)
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.ledger import AccountClass, LedgerTransaction
from ledger_kernel.domain.values import BALANCE_TOLERANCE, ZERO, Severity, round_money
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation.detector")

_TYPE_ORDER = {
    DiscrepancyType.MISSING_TRANSACTION: 0,
    DiscrepancyType.BALANCE_MISMATCH: 1,
    DiscrepancyType.UNBALANCED_TRANSACTION: 2,
    DiscrepancyType.INCORRECT_AMOUNT: 3,
}


class DiscrepancyDetector:
    """
    Pure engine for discrepancy checks.

    Usage:
        detector = DiscrepancyDetector()
        found = detector.run_all_checks(checkpoints, transactions)
    """

    # -----------------------------------------------------------------
    # Balance mismatches
    # -----------------------------------------------------------------

    def check_balance_mismatches(
        self, checkpoints: Sequence[BalanceCheckpoint]
    ) -> tuple[Discrepancy, ...]:
        """Collapse runs of consecutive checkpoints sharing one discrepancy."""
        found: list[Discrepancy] = []
        run: list[BalanceCheckpoint] = []

        def flush() -> None:
            if not run:
                return
            first, last = run[0], run[-1]
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.BALANCE_MISMATCH,
                    amount=first.discrepancy,
                    severity=first.severity,
                    start_date=first.date,
                    end_date=last.date,
                    summary=(
                        f"Balance mismatch of {first.discrepancy} at "
                        f"{len(run)} checkpoint(s) from row {first.row_ordinal}"
                    ),
                    affected_rows=tuple(c.row_ordinal for c in run),
                    expected=first.ground_truth,
                    actual=first.computed,
                )
            )
            run.clear()

        for cp in checkpoints:
            if not cp.has_discrepancy:
                flush()
                continue
            if run and round_money(run[-1].discrepancy) != round_money(cp.discrepancy):
                flush()
            run.append(cp)
        flush()
        return tuple(found)

    # -----------------------------------------------------------------
    # Negative opening balance
    # -----------------------------------------------------------------

    def check_negative_opening(
        self, checkpoints: Sequence[BalanceCheckpoint]
    ) -> tuple[Discrepancy, ...]:
        """
        A negative first computed balance that disagrees with the ground
        truth means funding is missing.  An account whose reading is itself
        negative (margin, overdraft) and matches the ledger is clean.
        """
        if not checkpoints:
            return ()
        first = checkpoints[0]
        if first.computed >= ZERO or not first.has_discrepancy:
            return ()
        return (
            Discrepancy(
                discrepancy_type=DiscrepancyType.MISSING_TRANSACTION,
                amount=first.discrepancy,
                severity=Severity.CRITICAL,
                start_date=first.date,
                end_date=first.date,
                summary=(
                    "Negative starting balance indicates a missing opening "
                    "balance or funding transaction"
                ),
                affected_rows=(first.row_ordinal,),
                expected=first.ground_truth,
                actual=first.computed,
            ),
        )

    # -----------------------------------------------------------------
    # Unbalanced transactions
    # -----------------------------------------------------------------

    def check_unbalanced(
        self, transactions: Sequence[LedgerTransaction]
    ) -> tuple[Discrepancy, ...]:
        found = []
        for txn in transactions:
            if len(txn.lines) >= 2 and abs(txn.imbalance) < BALANCE_TOLERANCE:
                continue
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.UNBALANCED_TRANSACTION,
                    amount=txn.imbalance,
                    severity=Severity.CRITICAL,
                    start_date=txn.date,
                    end_date=txn.date,
                    summary=f"Unbalanced transaction: debits {txn.total_debits} != credits {txn.total_credits}",
                    affected_rows=txn.source_rows,
                    affected_transactions=(txn.id,),
                    expected=txn.total_credits,
                    actual=txn.total_debits,
                )
            )
        return tuple(found)

    # -----------------------------------------------------------------
    # Incorrect amounts
    # -----------------------------------------------------------------

    def check_incorrect_amounts(
        self, transactions: Sequence[LedgerTransaction]
    ) -> tuple[Discrepancy, ...]:
        """Net cash effect must equal the primary row's signed amount."""
        found = []
        for txn in transactions:
            if txn.primary_amount is None:
                continue
            cash_lines = [ln for ln in txn.lines if ln.account_class == AccountClass.CASH]
            if not cash_lines:
                continue
            net_cash = sum((ln.debit - ln.credit for ln in cash_lines), ZERO)
            diff = net_cash - txn.primary_amount
            if abs(diff) <= BALANCE_TOLERANCE:
                continue
            found.append(
                Discrepancy(
                    discrepancy_type=DiscrepancyType.INCORRECT_AMOUNT,
                    amount=diff,
                    severity=Severity.for_amount(diff),
                    start_date=txn.date,
                    end_date=txn.date,
                    summary=(
                        f"Cash effect {net_cash} differs from row amount "
                        f"{txn.primary_amount}"
                    ),
                    affected_rows=txn.source_rows,
                    affected_transactions=(txn.id,),
                    expected=txn.primary_amount,
                    actual=net_cash,
                )
            )
        return tuple(found)

    # -----------------------------------------------------------------
    # Run all
    # -----------------------------------------------------------------

    @traced_engine("discrepancy_detector", "1.0")
    def run_all_checks(
        self,
        checkpoints: Sequence[BalanceCheckpoint],
        transactions: Sequence[LedgerTransaction],
    ) -> tuple[Discrepancy, ...]:
        found = (
            self.check_negative_opening(checkpoints)
            + self.check_balance_mismatches(checkpoints)
            + self.check_unbalanced(transactions)
            + self.check_incorrect_amounts(transactions)
        )
        ordered = tuple(
            sorted(
                found,
                key=lambda d: (
                    d.start_date,
                    _TYPE_ORDER[d.discrepancy_type],
                    d.affected_rows[0] if d.affected_rows else -1,
                ),
            )
        )
        logger.info(
            "discrepancies_detected",
            extra={
                "checkpoint_count": len(checkpoints),
                "discrepancy_count": len(ordered),
                "critical_count": sum(1 for d in ordered if d.severity == Severity.CRITICAL),
            },
        )
        return ordered


def scan(
    checkpoint_builder: CheckpointBuilder,
    rows,
    transactions: Sequence[LedgerTransaction],
    detector: DiscrepancyDetector | None = None,
) -> ScanResult:
    """Refresh the fold with ``transactions`` and detect discrepancies."""
    checkpoint_builder.set_transactions(transactions)
    checkpoints = checkpoint_builder.build(rows)
    discrepancies = (detector or DiscrepancyDetector()).run_all_checks(
        checkpoints, list(transactions)
    )
    return ScanResult(checkpoints=checkpoints, discrepancies=discrepancies)


def max_abs(values: Sequence[Decimal]) -> Decimal:
    return max((abs(v) for v in values), default=ZERO)
