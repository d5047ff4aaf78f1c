"""
Hypothesis-based property tests.

Properties checked:
- Money text round-trips through parse_decimal exactly
- validate_lines accepts exact balance and rejects anything at or past the noise epsilon
- Settlement grouping covers every row once, in input order
- Coverage gives every row exactly one disposition
- The memoized checkpoint fold always equals a from-scratch sum, across ledger edits
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from hypothesis import HealthCheck, given, settings
from hypothesis import strategies as st

from ledger_engines.coverage import RowDisposition, compute_coverage
from ledger_engines.reconciliation import CheckpointBuilder
from ledger_engines.settlement import DualRowSettlementPolicy, group_rows
from ledger_kernel.domain.ledger import (
    AccountClass,
    JournalLine,
    LedgerTransaction,
    Side,
    TransactionType,
    validate_lines,
)
from ledger_kernel.domain.values import NOISE_EPSILON, parse_decimal
from ledger_kernel.exceptions import UnbalancedTransactionError
from tests.factories import make_row

pytestmark = pytest.mark.slow

START = date(2024, 1, 1)

money = st.decimals(
    min_value=Decimal("0.01"), max_value=Decimal("999999999.99"), places=2, allow_nan=False, allow_infinity=False
)


def _cash_txn(day: int, amount: Decimal, rows=()) -> LedgerTransaction:
    if amount > 0:
        lines = (
            JournalLine.debit_of(AccountClass.CASH, "USD", amount),
            JournalLine.credit_of(AccountClass.EQUITY, "Owner Contributions", amount),
        )
    else:
        lines = (
            JournalLine.debit_of(AccountClass.EXPENSE, "Fees", -amount),
            JournalLine.credit_of(AccountClass.CASH, "USD", -amount),
        )
    return LedgerTransaction(
        id=uuid4(),
        date=START + timedelta(days=day),
        description="generated",
        transaction_type=TransactionType.OTHER,
        lines=lines,
        source_rows=tuple(rows),
    )


class TestMoneyParsing:
    @given(amount=money)
    def test_formatted_money_round_trips(self, amount):
        assert parse_decimal(f"${amount:,.2f}") == amount
        assert parse_decimal(f"({amount:,.2f})") == -amount
        assert parse_decimal(str(-amount)) == -amount


class TestBalanceValidation:
    @given(amounts=st.lists(money, min_size=1, max_size=20))
    def test_exact_balance_accepted(self, amounts):
        lines = [JournalLine.debit_of(AccountClass.EXPENSE, "E", a) for a in amounts]
        lines.append(JournalLine.credit_of(AccountClass.CASH, "USD", sum(amounts, Decimal("0"))))
        assert validate_lines(lines) == Decimal("0")

    @given(
        amounts=st.lists(money, min_size=1, max_size=20),
        skew=st.decimals(min_value=NOISE_EPSILON, max_value=Decimal("1000"), places=3),
    )
    def test_imbalance_past_epsilon_rejected(self, amounts, skew):
        total = sum(amounts, Decimal("0"))
        lines = [JournalLine.debit_of(AccountClass.EXPENSE, "E", a) for a in amounts]
        lines.append(JournalLine.credit_of(AccountClass.CASH, "USD", total + skew))
        with pytest.raises(UnbalancedTransactionError):
            validate_lines(lines)


class TestGroupingTotality:
    @given(kinds=st.lists(st.sampled_from(["primary", "settlement"]), max_size=40))
    def test_every_row_lands_in_one_unit(self, kinds):
        rows = [
            make_row(i, action="YOU BOUGHT", symbol="SPY", quantity="1", amount="-1")
            if kind == "primary"
            else make_row(i, quantity="0", amount="1", balance="0")
            for i, kind in enumerate(kinds)
        ]

        units = group_rows(rows, DualRowSettlementPolicy())

        flattened = [o for u in units for o in u.row_ordinals]
        assert flattened == list(range(len(rows)))
        assert all(u.degenerate == (u.primary is None) for u in units)


class TestCoverageDisposition:
    @given(
        row_count=st.integers(min_value=0, max_value=30),
        claims=st.lists(st.lists(st.integers(min_value=0, max_value=34), min_size=1, max_size=4), max_size=15),
        excluded=st.sets(st.integers(min_value=0, max_value=34), max_size=8),
    )
    def test_each_row_has_one_disposition(self, row_count, claims, excluded):
        ledger = [_cash_txn(0, Decimal("1"), rows) for rows in claims]

        report = compute_coverage(range(row_count), ledger, excluded)

        buckets = {d: 0 for d in RowDisposition}
        for ordinal in range(row_count):
            buckets[report.disposition(ordinal)] += 1
        assert sum(buckets.values()) == row_count
        assert set(report.uncovered).isdisjoint(report.covered)
        assert all(o >= row_count for o in report.dangling)
        if row_count:
            assert Decimal("0") <= report.percent_covered <= Decimal("100")


class TestCheckpointFold:
    @settings(suppress_health_check=[HealthCheck.too_slow], max_examples=60)
    @given(
        entries=st.lists(
            st.tuples(
                st.integers(min_value=0, max_value=20),
                st.decimals(min_value=Decimal("-5000"), max_value=Decimal("5000"), places=2).filter(lambda d: d != 0),
            ),
            min_size=1,
            max_size=25,
        ),
        reading_days=st.lists(st.integers(min_value=0, max_value=22), min_size=1, max_size=8),
        drop=st.sets(st.integers(min_value=0, max_value=24)),
    )
    def test_memoized_fold_matches_naive_sum(self, entries, reading_days, drop):
        ledger = [_cash_txn(day, amount) for day, amount in entries]
        signed = {t.id: amount for t, (_, amount) in zip(ledger, entries)}
        rows = [
            make_row(i, row_date=START + timedelta(days=day), balance="0")
            for i, day in enumerate(sorted(reading_days))
        ]
        builder = CheckpointBuilder()

        def check(txns):
            builder.set_transactions(txns)
            for cp in builder.build(rows):
                naive = sum((signed[t.id] for t in txns if t.date <= cp.date), Decimal("0"))
                assert cp.computed == naive

        check(ledger)
        check([t for i, t in enumerate(ledger) if i not in drop])
        check(ledger)
