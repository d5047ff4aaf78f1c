"""Tests for the row -> transaction coverage index."""

from decimal import Decimal
from uuid import uuid4

from ledger_engines.coverage import RowDisposition, compute_coverage, rows_covered_by
from ledger_kernel.domain.ledger import AccountClass, JournalLine, LedgerTransaction, TransactionType
from tests.factories import SCENARIO_DATE, make_row


def _txn(rows, leg_rows=()):
    return LedgerTransaction(
        id=uuid4(),
        date=SCENARIO_DATE,
        description="t",
        transaction_type=TransactionType.OTHER,
        lines=(
            JournalLine.debit_of(AccountClass.CASH, "USD", Decimal("1"), source_rows=tuple(leg_rows)),
            JournalLine.credit_of(AccountClass.INCOME, "Other Income", Decimal("1")),
        ),
        source_rows=tuple(rows),
    )


def _rows(n):
    return [make_row(i, amount="1") for i in range(n)]


class TestCoverage:
    def test_complete_coverage(self):
        t1, t2 = _txn([0, 1]), _txn([2])
        report = compute_coverage(_rows(3), [t1, t2])

        assert report.is_complete
        assert report.covered == {0: (t1.id,), 1: (t1.id,), 2: (t2.id,)}
        assert report.percent_covered == Decimal("100.00")

    def test_uncovered_rows_reported(self):
        report = compute_coverage(_rows(4), [_txn([0])])

        assert report.uncovered == (1, 2, 3)
        assert report.percent_covered == Decimal("25.00")
        assert report.disposition(2) == RowDisposition.UNCOVERED

    def test_over_covered_rows_flagged(self):
        t1, t2 = _txn([0, 1]), _txn([1])
        report = compute_coverage(_rows(2), [t1, t2])

        assert report.over_covered == {1: (t1.id, t2.id)}
        assert not report.is_complete
        assert report.disposition(1) == RowDisposition.OVER_COVERED

    def test_excluded_rows_count_toward_percentage(self):
        report = compute_coverage(_rows(4), [_txn([0, 1])], excluded=[2])

        assert report.excluded == (2,)
        assert report.uncovered == (3,)
        assert report.percent_covered == Decimal("75.00")
        assert report.disposition(2) == RowDisposition.EXCLUDED

    def test_excluded_but_covered_is_a_conflict(self):
        report = compute_coverage(_rows(2), [_txn([0])], excluded=[0])
        assert report.excluded_conflicts == (0,)

    def test_leg_level_row_references_count(self):
        txn = _txn([0], leg_rows=[1])
        assert rows_covered_by(txn) == frozenset({0, 1})
        assert compute_coverage(_rows(2), [txn]).is_complete

    def test_rows_unknown_to_the_batch_are_dangling(self):
        report = compute_coverage(_rows(1), [_txn([0, 9])])
        assert report.dangling == (9,)
        assert report.total_rows == 1

    def test_empty_batch_is_fully_covered(self):
        report = compute_coverage([], [])
        assert report.percent_covered == Decimal("100.00")
        assert report.to_summary()["total"] == 0

    def test_accepts_bare_ordinals(self):
        report = compute_coverage([0, 1], [_txn([0])])
        assert report.uncovered == (1,)
