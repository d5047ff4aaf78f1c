"""
ledger_engines.settlement -- Settlement grouping of source rows.

Responsibility:
    Classify each row as primary or settlement under an institution's
    policy and group rows into ``TransactionUnit`` objects: one primary row
    plus the settlement rows that immediately follow it.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Invariants enforced:
    - Every input row lands in exactly one unit (total coverage).
    - A settlement row with no preceding primary becomes its own unit
      flagged ``degenerate``; it is never dropped.
    - Output order follows input order.

Failure modes:
    - KeyError from ``policy_for`` on an unknown policy name.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Sequence

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.domain.values import ZERO
from ledger_kernel.logging_config import get_logger

logger = get_logger("engines.settlement")


@dataclass(frozen=True, slots=True)
class TransactionUnit:
    """
    Ordered rows forming one economic event.

    ``primary`` is None only for a degenerate unit made of an orphaned
    settlement row.
    """

    rows: tuple[SourceRow, ...]
    primary: SourceRow | None
    degenerate: bool = False

    @property
    def settlement_rows(self) -> tuple[SourceRow, ...]:
        return tuple(r for r in self.rows if r is not self.primary)

    @property
    def row_ordinals(self) -> tuple[int, ...]:
        return tuple(r.global_ordinal for r in self.rows)


class SettlementPolicy(ABC):
    """Per-institution rule for which rows are settlements."""

    name: str = "abstract"

    @abstractmethod
    def is_settlement(self, row: SourceRow) -> bool:
        ...

    def group(self, rows: Sequence[SourceRow]) -> list[TransactionUnit]:
        """Attach each settlement row to the preceding primary's unit."""
        units: list[TransactionUnit] = []
        current: list[SourceRow] = []

        for row in rows:
            if not self.is_settlement(row):
                if current:
                    units.append(TransactionUnit(rows=tuple(current), primary=current[0]))
                current = [row]
            elif current:
                current.append(row)
            else:
                logger.warning(
                    "orphan_settlement_row",
                    extra={
                        "row_ordinal": row.global_ordinal,
                        "row_date": row.mapped.date,
                        "policy": self.name,
                    },
                )
                units.append(TransactionUnit(rows=(row,), primary=None, degenerate=True))

        if current:
            units.append(TransactionUnit(rows=tuple(current), primary=current[0]))
        return units


class DualRowSettlementPolicy(SettlementPolicy):
    """
    Export convention where a primary row is followed by a balance-only row.

    A settlement row has an empty action, an empty symbol and a zero (or
    missing) quantity.
    """

    name = "dual_row"

    def is_settlement(self, row: SourceRow) -> bool:
        m = row.mapped
        return not m.action and not m.symbol and m.quantity_or_zero == ZERO


class NoSettlementPolicy(SettlementPolicy):
    """Every row is its own primary."""

    name = "none"

    def is_settlement(self, row: SourceRow) -> bool:
        return False

    def group(self, rows: Sequence[SourceRow]) -> list[TransactionUnit]:
        return [TransactionUnit(rows=(row,), primary=row) for row in rows]


SETTLEMENT_POLICIES: dict[str, type[SettlementPolicy]] = {
    DualRowSettlementPolicy.name: DualRowSettlementPolicy,
    NoSettlementPolicy.name: NoSettlementPolicy,
}


def policy_for(name: str) -> SettlementPolicy:
    return SETTLEMENT_POLICIES[name]()


@traced_engine("settlement_grouper", "1.0", fingerprint_fields=("rows",))
def group_rows(
    rows: Sequence[SourceRow], policy: SettlementPolicy
) -> tuple[TransactionUnit, ...]:
    """Group rows into transaction units under ``policy``."""
    units = tuple(policy.group(rows))
    degenerate = sum(1 for u in units if u.degenerate)
    logger.info(
        "rows_grouped",
        extra={
            "policy": policy.name,
            "row_count": len(rows),
            "unit_count": len(units),
            "degenerate_count": degenerate,
        },
    )
    return units
