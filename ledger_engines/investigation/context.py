"""
Context window assembly for oracle requests.

Pure: selects the rows, transactions and balance checkpoints dated within
+-N days of a discrepancy's date range.
"""

from __future__ import annotations

from datetime import timedelta
from typing import Sequence

from ledger_engines.investigation.types import ContextWindow, OracleRequest, Thoroughness
from ledger_engines.reconciliation.types import BalanceCheckpoint, Discrepancy
from ledger_kernel.domain.ledger import LedgerTransaction
from ledger_kernel.domain.rows import SourceRow


def build_context_window(
    discrepancy: Discrepancy,
    rows: Sequence[SourceRow],
    transactions: Sequence[LedgerTransaction],
    checkpoints: Sequence[BalanceCheckpoint],
    context_days: int,
) -> ContextWindow:
    start = discrepancy.start_date - timedelta(days=context_days)
    end = discrepancy.end_date + timedelta(days=context_days)

    in_rows = tuple(
        r for r in rows if r.mapped.date is not None and start <= r.mapped.date <= end
    )
    in_txns = tuple(
        sorted(
            (t for t in transactions if start <= t.date <= end),
            key=lambda t: (t.date, t.min_ordinal if t.min_ordinal is not None else -1),
        )
    )
    in_series = tuple(c for c in checkpoints if start <= c.date <= end)
    return ContextWindow(
        start_date=start,
        end_date=end,
        rows=in_rows,
        transactions=in_txns,
        balance_series=in_series,
    )


def build_request(
    account_id: str,
    discrepancy: Discrepancy,
    rows: Sequence[SourceRow],
    transactions: Sequence[LedgerTransaction],
    checkpoints: Sequence[BalanceCheckpoint],
    thoroughness: Thoroughness = Thoroughness.BALANCED,
    context_days: int | None = None,
) -> OracleRequest:
    """``context_days`` overrides the thoroughness preset when given."""
    days = context_days if context_days is not None else thoroughness.context_days
    return OracleRequest(
        account_id=account_id,
        discrepancy=discrepancy,
        context=build_context_window(discrepancy, rows, transactions, checkpoints, days),
        thoroughness=thoroughness,
    )
