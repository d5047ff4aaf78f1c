"""
ledger_engines.reconciliation.checkpoints -- Balance checkpoint builder.

Responsibility:
    Pair every ground-truth balance reading with the ledger's running
    balance as of that reading's date.  This is the reconciliation engine's
    only independent source of truth.

Architecture position:
    Engines -- pure, zero I/O.  Single-threaded by construction: the
    running balance is a time-ordered fold.

Invariants enforced:
    - Running balance at date D is the signed sum over every transaction
      whose effective date is <= D, taken in (date, minimum row ordinal)
      order, of cash legs plus legs on the balance instrument.
    - Signed effect of a counted leg is debit minus credit.
    - Memoized balances are dropped for every date on or after the earliest
      date touched by a transaction change; nothing stale is served.
"""

from __future__ import annotations

from bisect import bisect_right
from datetime import date
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from ledger_engines.reconciliation.types import BalanceCheckpoint, BalanceDateBasis
from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.assets import normalize_symbol
from ledger_kernel.domain.ledger import AccountClass, JournalLine, LedgerTransaction
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.domain.values import ZERO
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.reconciliation.checkpoints")


class CheckpointBuilder:
    """
    Memoizing running-balance fold for one account.

    Contract:
        Call ``set_transactions`` whenever the ledger changes; it compares
        the new set with the old one and invalidates the memo from the
        earliest affected date.  ``build(rows)`` then emits one checkpoint
        per row carrying a balance.

    Non-goals:
        Thread safety.  One builder per reconciliation run.
    """

    def __init__(
        self,
        balance_instrument: str | None = None,
        basis: BalanceDateBasis = BalanceDateBasis.TRADE,
    ):
        self._instrument = normalize_symbol(balance_instrument) if balance_instrument else None
        self._basis = basis
        self._transactions: dict[UUID, LedgerTransaction] = {}
        self._ordered: list[LedgerTransaction] = []
        self._dates: list[date] = []
        self._memo: dict[date, Decimal] = {}

    # ------------------------------------------------------------------
    # Leg selection
    # ------------------------------------------------------------------

    def counts_toward_balance(self, line: JournalLine) -> bool:
        if line.account_class == AccountClass.CASH:
            return True
        if self._instrument is None:
            return False
        return normalize_symbol(line.asset_symbol or line.account_name) == self._instrument

    def cash_effect(self, txn: LedgerTransaction) -> Decimal:
        return sum(
            (ln.debit - ln.credit for ln in txn.lines if self.counts_toward_balance(ln)),
            ZERO,
        )

    def effective_date(self, txn: LedgerTransaction) -> date:
        if self._basis == BalanceDateBasis.SETTLEMENT and txn.settlement_date is not None:
            return txn.settlement_date
        return txn.date

    def row_date(self, row: SourceRow) -> date | None:
        if self._basis == BalanceDateBasis.SETTLEMENT and row.mapped.settlement_date is not None:
            return row.mapped.settlement_date
        return row.mapped.date

    def _sort_key(self, txn: LedgerTransaction):
        min_ordinal = txn.min_ordinal
        return (
            self.effective_date(txn),
            min_ordinal if min_ordinal is not None else 2**62,
            str(txn.id),
        )

    # ------------------------------------------------------------------
    # Transaction set and memo
    # ------------------------------------------------------------------

    def set_transactions(self, transactions: Iterable[LedgerTransaction]) -> None:
        new = {t.id: t for t in transactions}
        changed_dates: list[date] = []
        for txn_id in self._transactions.keys() | new.keys():
            old_txn = self._transactions.get(txn_id)
            new_txn = new.get(txn_id)
            if old_txn == new_txn:
                continue
            for t in (old_txn, new_txn):
                if t is not None:
                    changed_dates.append(self.effective_date(t))

        self._transactions = new
        self._ordered = sorted(new.values(), key=self._sort_key)
        self._dates = [self.effective_date(t) for t in self._ordered]
        if changed_dates:
            self.invalidate_from(min(changed_dates))

    def invalidate_from(self, since: date) -> None:
        """Drop memoized balances dated on or after ``since``."""
        stale = [d for d in self._memo if d >= since]
        for d in stale:
            del self._memo[d]
        if stale:
            logger.debug(
                "checkpoint_memo_invalidated",
                extra={"since": since, "dropped": len(stale)},
            )

    def balance_as_of(self, as_of: date) -> Decimal:
        """Running balance including every transaction dated <= as_of."""
        cached = self._memo.get(as_of)
        if cached is not None:
            return cached

        # Resume from the nearest earlier memoized date, if any.
        start_date = None
        total = ZERO
        earlier = [d for d in self._memo if d < as_of]
        if earlier:
            start_date = max(earlier)
            total = self._memo[start_date]

        lo = bisect_right(self._dates, start_date) if start_date is not None else 0
        hi = bisect_right(self._dates, as_of)
        for txn in self._ordered[lo:hi]:
            total += self.cash_effect(txn)

        self._memo[as_of] = total
        return total

    def running_balances(self) -> list[tuple[LedgerTransaction, Decimal]]:
        """Per-transaction running balance in fold order."""
        out: list[tuple[LedgerTransaction, Decimal]] = []
        total = ZERO
        for txn in self._ordered:
            total += self.cash_effect(txn)
            out.append((txn, total))
        return out

    # ------------------------------------------------------------------
    # Checkpoints
    # ------------------------------------------------------------------

    def build(self, rows: Sequence[SourceRow]) -> tuple[BalanceCheckpoint, ...]:
        readings = []
        for row in rows:
            if row.mapped.balance is None:
                continue
            as_of = self.row_date(row)
            if as_of is None:
                logger.warning(
                    "balance_row_without_date",
                    extra={"row_ordinal": row.global_ordinal},
                )
                continue
            readings.append((as_of, row.global_ordinal, row.mapped.balance))

        readings.sort(key=lambda r: (r[0], r[1]))
        return tuple(
            BalanceCheckpoint(
                row_ordinal=ordinal,
                date=as_of,
                ground_truth=balance,
                computed=self.balance_as_of(as_of),
            )
            for as_of, ordinal, balance in readings
        )


@traced_engine("balance_checkpoints", "1.0", fingerprint_fields=("balance_instrument", "basis"))
def build_checkpoints(
    rows: Sequence[SourceRow],
    transactions: Iterable[LedgerTransaction],
    balance_instrument: str | None = None,
    basis: BalanceDateBasis = BalanceDateBasis.TRADE,
) -> tuple[BalanceCheckpoint, ...]:
    """One-shot convenience wrapper around CheckpointBuilder."""
    builder = CheckpointBuilder(balance_instrument=balance_instrument, basis=basis)
    builder.set_transactions(transactions)
    return builder.build(rows)
