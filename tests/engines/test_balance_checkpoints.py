"""
Tests for the balance checkpoint fold.

Covers the reference scenario, the balance instrument, trade vs.
settlement date basis, fold ordering and memo invalidation.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

from ledger_engines.builder import TransactionBuilder
from ledger_engines.reconciliation import (
    BalanceDateBasis,
    CheckpointBuilder,
    build_checkpoints,
)
from ledger_engines.settlement import DualRowSettlementPolicy, group_rows
from ledger_kernel.domain.ledger import AccountClass, JournalLine, LedgerTransaction, TransactionType
from ledger_kernel.domain.values import Severity
from tests.factories import SCENARIO_DATE, TEST_ACCOUNT_ID, make_row


def _cash_txn(amount, on=SCENARIO_DATE, rows=(), settlement=None):
    amount = Decimal(amount)
    if amount >= 0:
        lines = (
            JournalLine.debit_of(AccountClass.CASH, "USD", amount),
            JournalLine.credit_of(AccountClass.EQUITY, "Owner Contributions", amount),
        )
    else:
        lines = (
            JournalLine.debit_of(AccountClass.EQUITY, "Owner Withdrawals", -amount),
            JournalLine.credit_of(AccountClass.CASH, "USD", -amount),
        )
    return LedgerTransaction(
        id=uuid4(),
        date=on,
        description="cash",
        transaction_type=TransactionType.TRANSFER,
        lines=lines,
        source_rows=tuple(rows),
        settlement_date=settlement,
    )


def _scenario_ledger(rows, registry):
    builder = TransactionBuilder(TEST_ACCOUNT_ID, registry)
    return [builder.build(u) for u in group_rows(rows, DualRowSettlementPolicy())]


class TestScenario:
    def test_checkpoint_at_row_b(self, scenario_rows, registry):
        checkpoints = build_checkpoints(scenario_rows, _scenario_ledger(scenario_rows, registry))

        assert [c.row_ordinal for c in checkpoints] == [1, 2]
        at_b = checkpoints[0]
        assert at_b.ground_truth == Decimal("46175.80")
        assert at_b.computed == Decimal("-2019.24")
        assert at_b.discrepancy == Decimal("48195.04")
        assert at_b.severity == Severity.CRITICAL

    def test_later_checkpoint_carries_same_gap(self, scenario_rows, registry):
        checkpoints = build_checkpoints(scenario_rows, _scenario_ledger(scenario_rows, registry))

        at_c = checkpoints[1]
        assert at_c.computed == Decimal("50244.76")
        assert at_c.discrepancy == Decimal("48195.04")


class TestLegSelection:
    def test_balance_instrument_legs_count(self, registry):
        builder = TransactionBuilder(TEST_ACCOUNT_ID, registry)
        rows = [
            make_row(0, action="YOU BOUGHT", symbol="SPAXX", quantity="100", amount="-100", balance="0"),
        ]
        txn = builder.build(group_rows(rows, DualRowSettlementPolicy())[0])

        without = build_checkpoints(rows, [txn])
        with_instrument = build_checkpoints(rows, [txn], balance_instrument="spaxx")

        assert without[0].computed == Decimal("-100")
        # Cash out and sweep fund in net to zero.
        assert with_instrument[0].computed == Decimal("0")

    def test_non_cash_legs_ignored(self):
        txn = LedgerTransaction(
            id=uuid4(),
            date=SCENARIO_DATE,
            description="div reinvest",
            transaction_type=TransactionType.DIVIDEND,
            lines=(
                JournalLine.debit_of(AccountClass.ASSET, "VTI", Decimal("5"), asset_symbol="VTI"),
                JournalLine.credit_of(AccountClass.INCOME, "Dividend Income", Decimal("5")),
            ),
            source_rows=(0,),
        )
        checkpoints = build_checkpoints([make_row(0, balance="0")], [txn])
        assert checkpoints[0].computed == Decimal("0")
        assert not checkpoints[0].has_discrepancy


class TestDateBasis:
    def test_settlement_basis_delays_effect(self):
        d = SCENARIO_DATE
        txn = _cash_txn("100", on=d, settlement=d + timedelta(days=2))
        rows = [make_row(0, row_date=d + timedelta(days=1), balance="0")]

        trade = build_checkpoints(rows, [txn], basis=BalanceDateBasis.TRADE)
        settle = build_checkpoints(rows, [txn], basis=BalanceDateBasis.SETTLEMENT)

        assert trade[0].computed == Decimal("100")
        assert settle[0].computed == Decimal("0")

    def test_row_settlement_date_used_under_settlement_basis(self):
        d = SCENARIO_DATE
        txn = _cash_txn("100", on=d, settlement=d + timedelta(days=2))
        rows = [make_row(0, row_date=d, settlement_date=d + timedelta(days=2), balance="100")]

        settle = build_checkpoints(rows, [txn], basis=BalanceDateBasis.SETTLEMENT)
        assert settle[0].date == d + timedelta(days=2)
        assert not settle[0].has_discrepancy


class TestFold:
    def test_includes_everything_up_to_and_including_row_date(self):
        d = SCENARIO_DATE
        ledger = [
            _cash_txn("100", on=d),
            _cash_txn("-30", on=d),
            _cash_txn("500", on=d + timedelta(days=1)),
        ]
        rows = [make_row(0, row_date=d, balance="70"), make_row(1, row_date=d + timedelta(days=1), balance="570")]

        checkpoints = build_checkpoints(rows, ledger)
        assert [c.computed for c in checkpoints] == [Decimal("70"), Decimal("570")]
        assert not any(c.has_discrepancy for c in checkpoints)

    def test_rows_without_balance_emit_nothing(self):
        assert build_checkpoints([make_row(0, amount="5")], []) == ()

    def test_running_balances_follow_fold_order(self):
        d = SCENARIO_DATE
        late = _cash_txn("10", on=d + timedelta(days=1), rows=(0,))
        early_b = _cash_txn("5", on=d, rows=(3,))
        early_a = _cash_txn("1", on=d, rows=(2,))
        builder = CheckpointBuilder()
        builder.set_transactions([late, early_b, early_a])

        assert [(t.id, bal) for t, bal in builder.running_balances()] == [
            (early_a.id, Decimal("1")),
            (early_b.id, Decimal("6")),
            (late.id, Decimal("16")),
        ]


class TestMemo:
    def test_change_invalidates_later_checkpoints(self):
        d = SCENARIO_DATE
        rows = [make_row(0, row_date=d, balance="100"), make_row(1, row_date=d + timedelta(days=5), balance="100")]
        base = _cash_txn("100", on=d)
        builder = CheckpointBuilder()
        builder.set_transactions([base])
        first = builder.build(rows)
        assert [c.computed for c in first] == [Decimal("100"), Decimal("100")]

        extra = _cash_txn("25", on=d + timedelta(days=3))
        builder.set_transactions([base, extra])
        second = builder.build(rows)
        assert [c.computed for c in second] == [Decimal("100"), Decimal("125")]

        builder.set_transactions([base])
        third = builder.build(rows)
        assert [c.computed for c in third] == [Decimal("100"), Decimal("100")]

    def test_unchanged_set_keeps_memo(self):
        d = SCENARIO_DATE
        base = _cash_txn("100", on=d)
        builder = CheckpointBuilder()
        builder.set_transactions([base])
        assert builder.balance_as_of(d) == Decimal("100")

        builder.set_transactions([base])
        assert builder.balance_as_of(d) == Decimal("100")
