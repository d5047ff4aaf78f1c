"""
ledger_engines.builder.builder -- TransactionBuilder.

Responsibility:
    Turn one TransactionUnit (or one oracle-proposed payload) into a
    validated ``LedgerTransaction``.

Architecture position:
    Engines -- pure apart from AssetRegistry resolution.  Safe to call from
    several worker threads at once; the registry serializes first creation
    of each symbol and the builder holds no mutable state of its own.

Invariants enforced:
    - Every built transaction passes ``validate_lines`` (>= 2 legs, balanced,
      only sub-epsilon noise absorbed).  Nothing is force-balanced.
    - Transaction ids are derived from the account and contributing rows, so
      re-running the builder on unchanged rows yields the same set.

Failure modes (all ConstructionError, per unit):
    - NoPrimaryRowError, MissingDateError, InvalidAmountError,
      InvalidQuantityError, MissingSymbolError, UnbalancedTransactionError,
      InsufficientLegsError.
"""

from __future__ import annotations

from ledger_engines.builder.rules import BuildContext, RuleTable
from ledger_engines.correction.delta import TransactionPayload
from ledger_engines.settlement import TransactionUnit
from ledger_kernel.domain.asset_registry import AssetRegistry
from ledger_kernel.domain.assets import infer_quantity_unit
from ledger_kernel.domain.ledger import (
    AccountClass,
    JournalLine,
    LedgerTransaction,
    transaction_id_for,
    validate_lines,
)
from ledger_kernel.domain.values import ZERO
from ledger_kernel.exceptions import (
    InvalidAmountError,
    MissingDateError,
    NoPrimaryRowError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.builder")


class TransactionBuilder:
    """
    Builds balanced transactions for one account.

    Contract:
        ``build(unit)`` returns a LedgerTransaction or raises a
        ConstructionError subclass.  ``build_from_payload`` does the same for
        an oracle-proposed payload.
    """

    def __init__(
        self,
        account_id: str,
        registry: AssetRegistry,
        rules: RuleTable | None = None,
        institution: str | None = None,
    ):
        self._account_id = account_id
        self._registry = registry
        self._rules = rules or RuleTable()
        self._institution = institution

    @property
    def registry(self) -> AssetRegistry:
        return self._registry

    def build(self, unit: TransactionUnit) -> LedgerTransaction:
        primary = unit.primary
        if primary is None:
            raise NoPrimaryRowError(unit.row_ordinals)

        mapped = primary.mapped
        if mapped.date is None:
            raise MissingDateError(primary.global_ordinal)
        if mapped.amount is None or mapped.amount == ZERO:
            raise InvalidAmountError(primary.global_ordinal, mapped.amount, mapped.action)

        ctx = BuildContext(
            unit=unit,
            primary=primary,
            registry=self._registry,
            institution=self._institution,
        )
        rule = self._rules.match(ctx)
        txn_type, lines = rule.template(ctx)

        validate_lines(lines, unit.row_ordinals, mapped.date)

        txn = LedgerTransaction(
            id=transaction_id_for(self._account_id, unit.row_ordinals),
            date=mapped.date,
            description=mapped.description or mapped.action,
            transaction_type=txn_type,
            lines=tuple(lines),
            source_rows=unit.row_ordinals,
            settlement_date=_settlement_date(unit),
            balance_snapshot=_balance_snapshot(unit),
            primary_amount=mapped.amount,
        )
        logger.debug(
            "transaction_built",
            extra={
                "rule": rule.name,
                "transaction_type": txn_type.value,
                "row_ordinals": list(unit.row_ordinals),
                "leg_count": len(lines),
            },
        )
        return txn

    def build_from_payload(self, payload: TransactionPayload, salt: str) -> LedgerTransaction:
        """
        Build a transaction from a delta payload.

        ``salt`` (the delta id) keeps ids of delta-created transactions apart
        from ids of imported ones covering the same rows.
        """
        lines: list[JournalLine] = []
        for entry in payload.entries:
            symbol = entry.asset_symbol
            name = entry.account_name
            unit = entry.quantity_unit
            if entry.account_class == AccountClass.ASSET and (symbol or name):
                asset = self._registry.resolve(symbol or name, institution=self._institution)
                symbol = asset.symbol
                name = asset.symbol
                if entry.quantity is not None and unit is None:
                    unit = infer_quantity_unit(asset.symbol)
            elif entry.account_class == AccountClass.CASH and symbol:
                symbol = self._registry.resolve(symbol).symbol
            lines.append(
                JournalLine(
                    account_class=entry.account_class,
                    account_name=name,
                    side=entry.side,
                    amount=entry.amount,
                    quantity=abs(entry.quantity) if entry.quantity is not None else None,
                    quantity_unit=unit,
                    asset_symbol=symbol,
                    source_rows=entry.source_rows,
                )
            )

        validate_lines(lines, payload.source_rows, payload.date)

        return LedgerTransaction(
            id=transaction_id_for(self._account_id, payload.source_rows, salt=salt),
            date=payload.date,
            description=payload.description,
            transaction_type=payload.transaction_type,
            lines=tuple(lines),
            source_rows=payload.source_rows,
        )


def _settlement_date(unit: TransactionUnit):
    primary = unit.primary
    if primary is not None and primary.mapped.settlement_date is not None:
        return primary.mapped.settlement_date
    dates = [r.mapped.date for r in unit.settlement_rows if r.mapped.date is not None]
    return max(dates) if dates else None


def _balance_snapshot(unit: TransactionUnit):
    for row in reversed(unit.rows):
        if row.mapped.balance is not None:
            return row.mapped.balance
    return None
