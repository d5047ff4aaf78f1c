"""
Rows -- the typed view of one ingested export row.

Responsibility:
    ``MappedRow`` is the strongly-typed standardized record populated once at
    ingestion; ``SourceRow`` pairs it with the row's ordinals and raw cells.
    Nothing downstream of ingestion looks at raw column names again.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    - SourceRow is immutable.
    - global_ordinal is unique within an account's row set and is the
      identity used by coverage, deltas and exclusions.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from decimal import Decimal
from types import MappingProxyType
from typing import Mapping

from ledger_kernel.domain.values import ZERO


@dataclass(frozen=True, slots=True)
class MappedRow:
    """Standardized fields of one row.  Only date and action are always present."""

    date: date | None
    action: str = ""
    symbol: str = ""
    quantity: Decimal | None = None
    amount: Decimal | None = None
    price: Decimal | None = None
    settlement_date: date | None = None
    balance: Decimal | None = None
    description: str = ""

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", (self.action or "").strip())
        object.__setattr__(self, "symbol", (self.symbol or "").strip())
        object.__setattr__(self, "description", (self.description or "").strip())

    @property
    def quantity_or_zero(self) -> Decimal:
        return self.quantity if self.quantity is not None else ZERO

    @property
    def has_balance(self) -> bool:
        return self.balance is not None


@dataclass(frozen=True, slots=True)
class SourceRow:
    """
    One ingested record.

    Contract:
        Owned by its import batch.  ``raw`` keeps the original cells for
        audit and for the oracle context; it is never consulted by the
        grouper or builder.
    """

    global_ordinal: int
    file_ordinal: int
    mapped: MappedRow
    raw: Mapping[str, str] = field(
        default_factory=dict, compare=False, hash=False
    )
    batch_id: str | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "raw", MappingProxyType(dict(self.raw)))

    @property
    def ordinal(self) -> int:
        return self.global_ordinal

    def with_mapped(self, **changes) -> "SourceRow":
        """Copy with some standardized fields replaced."""
        return SourceRow(
            global_ordinal=self.global_ordinal,
            file_ordinal=self.file_ordinal,
            mapped=replace(self.mapped, **changes),
            raw=dict(self.raw),
            batch_id=self.batch_id,
        )

    def to_context_dict(self) -> dict:
        """Plain-dict form used in oracle requests."""
        m = self.mapped
        return {
            "row": self.global_ordinal,
            "date": m.date.isoformat() if m.date else None,
            "action": m.action,
            "symbol": m.symbol,
            "quantity": str(m.quantity) if m.quantity is not None else None,
            "amount": str(m.amount) if m.amount is not None else None,
            "price": str(m.price) if m.price is not None else None,
            "balance": str(m.balance) if m.balance is not None else None,
            "description": m.description,
        }
