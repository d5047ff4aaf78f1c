"""
ledger_services.delta_applier -- The single reversible ledger mutation primitive.

Responsibility:
    Apply a ``TransactionDelta`` (create / update / delete / exclude) to the
    persisted ledger inside its own SAVEPOINT, record it with enough prior
    state to undo it, and revert it on request.

Architecture position:
    Services -- imperative shell.  Shared by gap filling and reconciliation.
    Flushes, never commits.

Invariants enforced:
    - Atomic per delta: any failure rolls back to the delta's SAVEPOINT;
      earlier deltas in the same session are untouched.
    - Idempotent: a delta whose id is already applied (and not reverted)
      is a no-op.
    - update is delete + create, never an in-place edit of journal lines.
    - exclude never deletes a row, it flags it.
    - Every created transaction passes the builder's balance validation.

Failure modes:
    - DeltaApplicationError wrapping the ConstructionError / DeltaError /
      AssetError that made the delta inapplicable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select

from ledger_engines.builder import TransactionBuilder
from ledger_engines.correction.delta import DeltaAction, TransactionDelta
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.ledger import (
    AccountClass,
    JournalLine,
    LedgerTransaction,
    Side,
    TransactionType,
)
from ledger_kernel.exceptions import (
    AssetError,
    ConstructionError,
    DeltaApplicationError,
    DeltaError,
    TransactionNotFoundError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.ledger import TransactionModel
from ledger_kernel.models.reconciliation import AppliedDeltaModel
from ledger_services.ledger_repository import LedgerRepository

logger = get_logger("services.delta_applier")


@dataclass(frozen=True)
class DeltaOutcome:
    delta_id: str
    action: DeltaAction
    applied: bool
    created: tuple[UUID, ...] = ()
    removed: tuple[UUID, ...] = ()
    excluded: tuple[int, ...] = ()


# ---------------------------------------------------------------------------
# Undo snapshots
# ---------------------------------------------------------------------------


def _dec(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None


def _snapshot(model: TransactionModel) -> dict[str, Any]:
    txn = model.to_domain()
    return {
        "id": str(txn.id),
        "date": txn.date.isoformat(),
        "description": txn.description,
        "transactionType": txn.transaction_type.value,
        "sourceRows": list(txn.source_rows),
        "settlementDate": txn.settlement_date.isoformat() if txn.settlement_date else None,
        "balanceSnapshot": _dec(txn.balance_snapshot),
        "primaryAmount": _dec(txn.primary_amount),
        "origin": model.origin,
        "createdByDeltaId": model.created_by_delta_id,
        "lines": [
            {
                "accountClass": ln.account_class.value,
                "accountName": ln.account_name,
                "side": ln.side.value,
                "amount": str(ln.amount),
                "quantity": _dec(ln.quantity),
                "quantityUnit": ln.quantity_unit,
                "assetSymbol": ln.asset_symbol,
                "sourceRows": list(ln.source_rows),
            }
            for ln in txn.lines
        ],
    }


def _restore(snapshot: dict[str, Any]) -> tuple[LedgerTransaction, str, str | None]:
    def dec(value):
        return Decimal(value) if value is not None else None

    txn = LedgerTransaction(
        id=UUID(snapshot["id"]),
        date=date.fromisoformat(snapshot["date"]),
        description=snapshot["description"],
        transaction_type=TransactionType(snapshot["transactionType"]),
        lines=tuple(
            JournalLine(
                account_class=AccountClass(ln["accountClass"]),
                account_name=ln["accountName"],
                side=Side(ln["side"]),
                amount=Decimal(ln["amount"]),
                quantity=dec(ln["quantity"]),
                quantity_unit=ln["quantityUnit"],
                asset_symbol=ln["assetSymbol"],
                source_rows=tuple(ln["sourceRows"]),
            )
            for ln in snapshot["lines"]
        ),
        source_rows=tuple(snapshot["sourceRows"]),
        settlement_date=(
            date.fromisoformat(snapshot["settlementDate"]) if snapshot["settlementDate"] else None
        ),
        balance_snapshot=dec(snapshot["balanceSnapshot"]),
        primary_amount=dec(snapshot["primaryAmount"]),
    )
    return txn, snapshot["origin"], snapshot["createdByDeltaId"]


# ---------------------------------------------------------------------------
# Applier
# ---------------------------------------------------------------------------


class DeltaApplier:
    """
    Applies and reverts deltas for one account.

    Contract:
        ``apply`` returns a DeltaOutcome (``applied=False`` for an already
        applied delta) or raises DeltaApplicationError with the session
        rolled back to where it was before the call.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        builder: TransactionBuilder,
        clock: Clock | None = None,
    ):
        self._repo = repository
        self._session = repository.session
        self._builder = builder
        self._clock = clock or SystemClock()

    def _record(self, delta_id: str) -> AppliedDeltaModel | None:
        stmt = select(AppliedDeltaModel).where(
            AppliedDeltaModel.account_id == self._repo.account_id,
            AppliedDeltaModel.delta_id == delta_id,
        )
        return self._session.scalars(stmt).first()

    def is_applied(self, delta: TransactionDelta) -> bool:
        record = self._record(delta.delta_id)
        return record is not None and record.reverted_at is None

    def apply(self, delta: TransactionDelta, run_id: UUID | None = None) -> DeltaOutcome:
        delta_id = delta.delta_id
        with LogContext.bind(delta_id=delta_id):
            record = self._record(delta_id)
            if record is not None and record.reverted_at is None:
                logger.info("delta_already_applied", extra={"action": delta.action.value})
                return DeltaOutcome(delta_id=delta_id, action=delta.action, applied=False)

            try:
                with self._session.begin_nested():
                    undo = self._apply_action(delta, delta_id)
                    now = self._clock.now()
                    if record is None:
                        self._session.add(
                            AppliedDeltaModel(
                                account_id=self._repo.account_id,
                                delta_id=delta_id,
                                run_id=run_id,
                                action=delta.action.value,
                                reason=delta.reason,
                                payload=delta.to_dict(),
                                undo=undo,
                                applied_at=now,
                            )
                        )
                    else:
                        record.run_id = run_id
                        record.undo = undo
                        record.applied_at = now
                        record.reverted_at = None
                    self._session.flush()
            except (ConstructionError, DeltaError, AssetError) as exc:
                logger.warning(
                    "delta_rejected",
                    extra={
                        "action": delta.action.value,
                        "error_code": exc.code,
                        "error": str(exc),
                    },
                )
                raise DeltaApplicationError(delta_id, delta.action.value, str(exc)) from exc

            outcome = DeltaOutcome(
                delta_id=delta_id,
                action=delta.action,
                applied=True,
                created=tuple(UUID(i) for i in undo["created"]),
                removed=tuple(UUID(s["id"]) for s in undo["removed"]),
                excluded=tuple(undo["excluded"]),
            )
            logger.info(
                "delta_applied",
                extra={
                    "action": delta.action.value,
                    "created": [str(i) for i in outcome.created],
                    "removed": [str(i) for i in outcome.removed],
                    "excluded": list(outcome.excluded),
                },
            )
            return outcome

    def _locate(self, delta: TransactionDelta) -> TransactionModel:
        if delta.original_transaction_id is not None:
            model = self._repo.get_transaction(delta.original_transaction_id)
            if model is None:
                raise TransactionNotFoundError(str(delta.original_transaction_id))
            return model
        model = self._repo.find_transaction_by_rows(delta.original_source_rows)
        if model is None:
            raise TransactionNotFoundError(
                "rows " + ",".join(str(o) for o in delta.original_source_rows)
            )
        return model

    def _apply_action(self, delta: TransactionDelta, delta_id: str) -> dict[str, Any]:
        undo: dict[str, Any] = {"created": [], "removed": [], "excluded": []}

        if delta.action in (DeltaAction.DELETE, DeltaAction.UPDATE):
            model = self._locate(delta)
            undo["removed"].append(_snapshot(model))
            self._repo.delete_transaction(model)

        if delta.action in (DeltaAction.CREATE, DeltaAction.UPDATE):
            txn = self._builder.build_from_payload(delta.new_transaction, salt=delta_id)
            self._repo.add_transaction(txn, origin="delta", delta_id=delta_id)
            undo["created"].append(str(txn.id))

        if delta.action == DeltaAction.EXCLUDE:
            undo["excluded"] = self._repo.exclude_rows(
                delta.excluded_rows, delta.reason, delta_id, self._clock.now()
            )

        return undo

    def revert(self, delta_id: str) -> bool:
        """Undo an applied delta.  False when there is nothing to undo."""
        with LogContext.bind(delta_id=delta_id):
            record = self._record(delta_id)
            if record is None or record.reverted_at is not None:
                return False

            with self._session.begin_nested():
                undo = record.undo or {}
                for created_id in undo.get("created", []):
                    model = self._repo.get_transaction(UUID(created_id))
                    if model is not None:
                        self._repo.delete_transaction(model)
                for snapshot in undo.get("removed", []):
                    txn, origin, created_by = _restore(snapshot)
                    if self._repo.get_transaction(txn.id) is None:
                        self._repo.add_transaction(txn, origin=origin, delta_id=created_by)
                self._repo.restore_rows(undo.get("excluded", []))
                record.reverted_at = self._clock.now()
                self._session.flush()

            logger.info("delta_reverted", extra={"action": record.action})
            return True
