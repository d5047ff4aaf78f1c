"""Tests for LedgerRepository persistence."""

from datetime import datetime, timezone
from decimal import Decimal

from ledger_engines.builder import TransactionBuilder
from ledger_engines.settlement import DualRowSettlementPolicy, group_rows
from ledger_services import LedgerRepository
from tests.factories import TEST_ACCOUNT_ID, make_row


def _repo(session, account_id=TEST_ACCOUNT_ID):
    return LedgerRepository(session, account_id)


class TestSourceRows:
    def test_rows_round_trip_exactly(self, session, scenario_rows):
        repo = _repo(session)
        repo.save_rows(scenario_rows)

        loaded = repo.load_rows()

        assert [r.global_ordinal for r in loaded] == [0, 1, 2]
        assert [r.mapped for r in loaded] == [r.mapped for r in scenario_rows]
        assert loaded[1].mapped.balance == Decimal("46175.80")

    def test_next_ordinal(self, session, scenario_rows):
        repo = _repo(session)
        assert repo.next_ordinal() == 0

        repo.save_rows(scenario_rows)
        assert repo.next_ordinal() == 3

    def test_accounts_are_isolated(self, session, scenario_rows):
        _repo(session).save_rows(scenario_rows)
        other = _repo(session, "acct-other")

        assert other.load_rows() == []
        assert other.next_ordinal() == 0


class TestTransactions:
    def _persist_scenario(self, session, rows, registry):
        repo = _repo(session)
        repo.save_rows(rows)
        builder = TransactionBuilder(TEST_ACCOUNT_ID, registry)
        txns = [builder.build(u) for u in group_rows(rows, DualRowSettlementPolicy())]
        for txn in txns:
            repo.add_transaction(txn)
        return repo, txns

    def test_transactions_round_trip(self, session, scenario_rows, registry):
        repo, txns = self._persist_scenario(session, scenario_rows, registry)

        loaded = repo.load_transactions()

        assert [t.id for t in loaded] == [t.id for t in txns]
        assert loaded[0].balance_snapshot == Decimal("46175.80")
        assert loaded[0].primary_amount == Decimal("-2019.24")
        assert loaded[0].lines == txns[0].lines

    def test_find_by_rows_needs_exact_set(self, session, scenario_rows, registry):
        repo, txns = self._persist_scenario(session, scenario_rows, registry)

        assert repo.find_transaction_by_rows([1, 0]).id == txns[0].id
        assert repo.find_transaction_by_rows([0]) is None
        assert repo.find_transaction_by_rows([]) is None

    def test_covered_rows(self, session, scenario_rows, registry):
        repo, _ = self._persist_scenario(session, scenario_rows, registry)
        assert repo.covered_rows() == {0, 1, 2}

    def test_delete_transaction(self, session, scenario_rows, registry):
        repo, txns = self._persist_scenario(session, scenario_rows, registry)

        repo.delete_transaction(repo.get_transaction(txns[1].id))

        assert [t.id for t in repo.load_transactions()] == [txns[0].id]
        assert repo.get_transaction(txns[1].id) is None

    def test_running_balances_written(self, session, scenario_rows, registry):
        repo, txns = self._persist_scenario(session, scenario_rows, registry)

        written = repo.write_running_balances(
            [(txns[0], Decimal("-2019.24")), (txns[1], Decimal("50244.76"))]
        )

        assert written == 2
        first, second = repo.load_transaction_models()
        assert first.running_balance == Decimal("-2019.24")
        assert first.discrepancy == Decimal("48195.04")
        assert second.discrepancy == Decimal("48195.04")


class TestExclusions:
    def test_exclude_and_restore(self, session, clock):
        repo = _repo(session)
        repo.save_rows([make_row(0, amount="1"), make_row(1, amount="2")])

        newly = repo.exclude_rows([1, 1, 0], "duplicate", "d1", clock.now())
        again = repo.exclude_rows([1], "duplicate", "d2", clock.now())

        assert newly == [0, 1]
        assert again == []
        assert repo.excluded_rows() == {0, 1}

        assert repo.restore_rows([1]) == 1
        assert repo.excluded_rows() == {0}

    def test_reexclusion_reuses_row(self, session):
        repo = _repo(session)
        at = datetime(2024, 3, 10, tzinfo=timezone.utc)
        repo.exclude_rows([4], "noise", "d1", at)
        repo.restore_rows([4])

        assert repo.exclude_rows([4], "noise again", "d2", at) == [4]
        assert repo.excluded_rows() == {4}

    def test_restore_nothing(self, session):
        assert _repo(session).restore_rows([]) == 0


class TestAssets:
    def test_saved_once(self, session, registry):
        repo = _repo(session)
        registry.resolve("SPY")

        assert repo.save_assets(registry.all_assets()) >= 1
        assert repo.save_assets(registry.all_assets()) == 0
        assert "SPY" in {a.symbol for a in repo.load_assets()}
