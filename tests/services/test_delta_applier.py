"""Tests for DeltaApplier: atomic, idempotent, reversible ledger mutations."""

from decimal import Decimal
from uuid import uuid4

import pytest

from ledger_engines.builder import TransactionBuilder
from ledger_engines.correction.delta import DeltaAction, TransactionDelta, TransactionPayload
from ledger_engines.settlement import DualRowSettlementPolicy
from ledger_kernel.exceptions import DeltaApplicationError
from ledger_services import ConstructionService, DeltaApplier, LedgerRepository
from tests.factories import TEST_ACCOUNT_ID, deposit_payload


@pytest.fixture
def ledger(session, registry, clock, scenario_rows):
    repo = LedgerRepository(session, TEST_ACCOUNT_ID)
    builder = TransactionBuilder(TEST_ACCOUNT_ID, registry)
    repo.save_rows(scenario_rows)
    ConstructionService(repo, builder, DualRowSettlementPolicy()).construct()
    return repo, DeltaApplier(repo, builder, clock=clock)


def _create(amount="48195.04", rows=()):
    return TransactionDelta.create(TransactionPayload.from_dict(deposit_payload(amount, rows=rows)), "missing funding")


class TestCreate:
    def test_create_adds_transaction(self, ledger):
        repo, applier = ledger

        outcome = applier.apply(_create())

        assert outcome.applied
        assert outcome.action == DeltaAction.CREATE
        (created_id,) = outcome.created
        model = repo.get_transaction(created_id)
        assert model.origin == "delta"
        assert model.created_by_delta_id == outcome.delta_id
        assert len(repo.load_transactions()) == 3

    def test_reapply_is_noop(self, ledger, captured_logs):
        repo, applier = ledger
        delta = _create()
        applier.apply(delta)

        second = applier.apply(delta)

        assert not second.applied
        assert len(repo.load_transactions()) == 3
        assert applier.is_applied(delta)
        assert any(r["message"] == "delta_already_applied" for r in captured_logs())

    def test_unbalanced_payload_rejected_atomically(self, ledger, captured_logs):
        repo, applier = ledger
        data = deposit_payload("10")
        data["journalEntries"][1]["amount"] = "9"
        delta = TransactionDelta.create(TransactionPayload.from_dict(data), "bad")

        with pytest.raises(DeltaApplicationError) as exc_info:
            applier.apply(delta)

        assert exc_info.value.delta_id == delta.delta_id
        assert len(repo.load_transactions()) == 2
        assert not applier.is_applied(delta)
        rejected = next(r for r in captured_logs() if r["message"] == "delta_rejected")
        assert rejected["delta_id"] == delta.delta_id
        assert rejected["error_code"] == "UNBALANCED_TRANSACTION"


class TestUpdateAndDelete:
    def test_update_by_rows_replaces_transaction(self, ledger):
        repo, applier = ledger
        original = repo.find_transaction_by_rows([2])
        delta = TransactionDelta.from_dict(
            {
                "action": "update",
                "reason": "reclassify transfer",
                "originalSourceRows": [2],
                "newTransactionData": deposit_payload("52264.00", rows=[2]),
            }
        )

        outcome = applier.apply(delta)

        assert outcome.removed == (original.id,)
        replacement = repo.find_transaction_by_rows([2])
        assert replacement.id == outcome.created[0]
        assert replacement.id != original.id

    def test_delete_by_id(self, ledger):
        repo, applier = ledger
        target = repo.find_transaction_by_rows([0, 1])

        applier.apply(TransactionDelta.delete(target.id, "duplicate"))

        assert repo.get_transaction(target.id) is None
        assert repo.covered_rows() == {2}

    def test_delete_missing_transaction(self, ledger):
        repo, applier = ledger

        with pytest.raises(DeltaApplicationError):
            applier.apply(TransactionDelta.delete(uuid4(), "gone"))

        # The session is still usable and nothing changed.
        assert len(repo.load_transactions()) == 2


class TestExclude:
    def test_exclude_flags_rows(self, ledger):
        repo, applier = ledger

        outcome = applier.apply(TransactionDelta.exclude((2,), "informational row"))

        assert outcome.excluded == (2,)
        assert repo.excluded_rows() == {2}
        assert len(repo.load_rows()) == 3


class TestRevert:
    def test_revert_create(self, ledger):
        repo, applier = ledger
        delta = _create()
        applier.apply(delta)

        assert applier.revert(delta.delta_id)
        assert len(repo.load_transactions()) == 2
        assert not applier.is_applied(delta)
        assert not applier.revert(delta.delta_id)

    def test_revert_delete_restores_original(self, ledger):
        repo, applier = ledger
        target = repo.find_transaction_by_rows([0, 1])
        before = target.to_domain()
        delta = TransactionDelta.delete(target.id, "duplicate")
        applier.apply(delta)

        applier.revert(delta.delta_id)

        restored = repo.get_transaction(before.id)
        assert restored.to_domain() == before
        assert restored.origin == "import"
        assert restored.balance_snapshot == Decimal("46175.80")

    def test_revert_exclude(self, ledger):
        repo, applier = ledger
        delta = TransactionDelta.exclude((1, 2), "noise")
        applier.apply(delta)

        applier.revert(delta.delta_id)

        assert repo.excluded_rows() == set()

    def test_reverted_delta_can_be_reapplied(self, ledger):
        repo, applier = ledger
        delta = _create()
        applier.apply(delta)
        applier.revert(delta.delta_id)

        outcome = applier.apply(delta)

        assert outcome.applied
        assert len(repo.load_transactions()) == 3

    def test_unknown_delta(self, ledger):
        _, applier = ledger
        assert not applier.revert("0" * 32)
