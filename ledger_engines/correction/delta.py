"""
ledger_engines.correction.delta -- TransactionDelta, the single ledger edit unit.

Responsibility:
    Value objects for the four ledger mutations (create / update / delete /
    exclude), their wire form as exchanged with the investigation oracle,
    and a deterministic ``delta_id`` used for idempotent re-application.

Architecture position:
    Engines -- pure, zero I/O.  Applied by ledger_services.delta_applier.

Invariants enforced:
    - create carries a new-transaction payload.
    - update carries a payload plus a reference to the transaction it
      replaces (id or source rows); it is applied as delete + create.
    - delete carries a reference.
    - exclude carries at least one row ordinal.
    - Identical deltas have identical delta_id values.

Failure modes:
    - InvalidDeltaError on a structurally invalid delta or payload.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from ledger_kernel.domain.ledger import AccountClass, Side, TransactionType
from ledger_kernel.domain.values import ZERO, parse_date, parse_decimal
from ledger_kernel.exceptions import InvalidDeltaError


class DeltaAction(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    EXCLUDE = "exclude"


# ---------------------------------------------------------------------------
# Payloads
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class EntryPayload:
    """One proposed journal leg."""

    side: Side
    account_class: AccountClass
    account_name: str
    amount: Decimal
    quantity: Decimal | None = None
    quantity_unit: str | None = None
    asset_symbol: str | None = None
    source_rows: tuple[int, ...] = ()
    csv_amount: Decimal | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.side.value,
            "accountType": self.account_class.value,
            "accountName": self.account_name,
            "amount": str(self.amount),
            "quantity": str(self.quantity) if self.quantity is not None else None,
            "quantityUnit": self.quantity_unit,
            "assetSymbol": self.asset_symbol,
            "sourceRows": list(self.source_rows),
            "csvAmount": str(self.csv_amount) if self.csv_amount is not None else None,
        }

    @classmethod
    def from_dict(cls, data: Any) -> "EntryPayload":
        if not isinstance(data, dict):
            raise InvalidDeltaError("journal entry is not an object")
        try:
            side = Side(str(data.get("type", "")).lower())
            account_class = AccountClass(str(data.get("accountType", "")).lower())
        except ValueError as exc:
            raise InvalidDeltaError(f"bad journal entry: {exc}") from exc

        amount = parse_decimal(data.get("amount"))
        if amount is None or amount <= ZERO:
            raise InvalidDeltaError(f"journal entry amount must be positive: {data.get('amount')!r}")

        name = str(data.get("accountName") or "").strip()
        if not name:
            raise InvalidDeltaError("journal entry has no accountName")

        return cls(
            side=side,
            account_class=account_class,
            account_name=name,
            amount=amount,
            quantity=parse_decimal(data.get("quantity")),
            quantity_unit=data.get("quantityUnit") or None,
            asset_symbol=data.get("assetSymbol") or None,
            source_rows=_int_tuple(data.get("sourceRows")),
            csv_amount=parse_decimal(data.get("csvAmount")),
        )


@dataclass(frozen=True, slots=True)
class TransactionPayload:
    """A proposed replacement or new transaction."""

    date: date
    description: str
    transaction_type: TransactionType
    entries: tuple[EntryPayload, ...]
    source_rows: tuple[int, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "sourceRows": list(self.source_rows),
            "date": self.date.isoformat(),
            "description": self.description,
            "transactionType": self.transaction_type.value,
            "journalEntries": [e.to_dict() for e in self.entries],
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionPayload":
        if not isinstance(data, dict):
            raise InvalidDeltaError("newTransactionData is not an object")
        txn_date = parse_date(data.get("date"))
        if txn_date is None:
            raise InvalidDeltaError(f"unparseable transaction date: {data.get('date')!r}")
        raw_entries = data.get("journalEntries")
        if not isinstance(raw_entries, list) or not raw_entries:
            raise InvalidDeltaError("newTransactionData has no journalEntries")
        return cls(
            date=txn_date,
            description=str(data.get("description") or ""),
            transaction_type=TransactionType.parse(data.get("transactionType")),
            entries=tuple(EntryPayload.from_dict(e) for e in raw_entries),
            source_rows=_int_tuple(data.get("sourceRows")),
        )


# ---------------------------------------------------------------------------
# Delta
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class TransactionDelta:
    """
    One ledger edit.

    Contract:
        ``original_transaction_id`` or ``original_source_rows`` locates the
        transaction an update/delete targets; the id wins when both are set.
    """

    action: DeltaAction
    reason: str
    original_transaction_id: UUID | None = None
    original_source_rows: tuple[int, ...] = ()
    new_transaction: TransactionPayload | None = None
    excluded_rows: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        has_ref = self.original_transaction_id is not None or bool(self.original_source_rows)
        if self.action == DeltaAction.CREATE and self.new_transaction is None:
            raise InvalidDeltaError("create delta needs newTransactionData")
        if self.action == DeltaAction.UPDATE:
            if self.new_transaction is None:
                raise InvalidDeltaError("update delta needs newTransactionData")
            if not has_ref:
                raise InvalidDeltaError("update delta needs the transaction it replaces")
        if self.action == DeltaAction.DELETE and not has_ref:
            raise InvalidDeltaError("delete delta needs a transaction reference")
        if self.action == DeltaAction.EXCLUDE and not self.excluded_rows:
            raise InvalidDeltaError("exclude delta needs excludedRows")

    @property
    def delta_id(self) -> str:
        """Content hash.  Identical deltas share an id."""
        canonical = json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "reason": self.reason,
            "originalTransactionId": (
                str(self.original_transaction_id) if self.original_transaction_id else None
            ),
            "originalSourceRows": list(self.original_source_rows),
            "newTransactionData": (
                self.new_transaction.to_dict() if self.new_transaction else None
            ),
            "excludedRows": list(self.excluded_rows),
        }

    @classmethod
    def from_dict(cls, data: Any) -> "TransactionDelta":
        if not isinstance(data, dict):
            raise InvalidDeltaError("delta is not an object")
        try:
            action = DeltaAction(str(data.get("action", "")).lower())
        except ValueError as exc:
            raise InvalidDeltaError(f"unknown delta action {data.get('action')!r}") from exc

        original_id = None
        raw_id = data.get("originalTransactionId")
        if raw_id:
            try:
                original_id = UUID(str(raw_id))
            except ValueError as exc:
                raise InvalidDeltaError(f"bad originalTransactionId {raw_id!r}") from exc

        new_data = data.get("newTransactionData")
        return cls(
            action=action,
            reason=str(data.get("reason") or ""),
            original_transaction_id=original_id,
            original_source_rows=_int_tuple(data.get("originalSourceRows")),
            new_transaction=TransactionPayload.from_dict(new_data) if new_data else None,
            excluded_rows=_int_tuple(data.get("excludedRows")),
        )

    # Factories ---------------------------------------------------------

    @classmethod
    def create(cls, payload: TransactionPayload, reason: str) -> "TransactionDelta":
        return cls(action=DeltaAction.CREATE, reason=reason, new_transaction=payload)

    @classmethod
    def delete(cls, transaction_id: UUID, reason: str) -> "TransactionDelta":
        return cls(action=DeltaAction.DELETE, reason=reason, original_transaction_id=transaction_id)

    @classmethod
    def exclude(cls, rows: tuple[int, ...], reason: str) -> "TransactionDelta":
        return cls(action=DeltaAction.EXCLUDE, reason=reason, excluded_rows=tuple(sorted(set(rows))))


def _int_tuple(value: Any) -> tuple[int, ...]:
    if value is None:
        return ()
    if not isinstance(value, (list, tuple)):
        raise InvalidDeltaError(f"expected a list of row numbers, got {value!r}")
    try:
        return tuple(int(v) for v in value)
    except (TypeError, ValueError) as exc:
        raise InvalidDeltaError(f"bad row number list {value!r}") from exc
