"""
ledger_engines.coverage -- Row -> transaction coverage index.

Responsibility:
    Recompute, on demand, which transactions cover each source row, and
    report the rows no transaction covers (gaps) and rows more than one
    transaction covers (a grouping defect).

Architecture position:
    Engines -- pure, zero I/O.  O(rows + sum of legs); never cached, so it
    is never stale.

Invariants enforced:
    - Every row has exactly one disposition: covered, excluded, uncovered
      or over-covered.  Over-covered is reported, never silently accepted.
    - Excluded rows count toward the covered percentage but reference no
      transaction.  An excluded row that a transaction still covers is
      reported as a conflict.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Iterable, Mapping
from uuid import UUID

from ledger_engines.tracer import traced_engine
from ledger_kernel.domain.ledger import LedgerTransaction
from ledger_kernel.domain.rows import SourceRow


class RowDisposition(str, Enum):
    COVERED = "covered"
    EXCLUDED = "excluded"
    UNCOVERED = "uncovered"
    OVER_COVERED = "over_covered"


@dataclass(frozen=True)
class CoverageReport:
    total_rows: int
    covered: Mapping[int, tuple[UUID, ...]] = field(default_factory=dict)
    uncovered: tuple[int, ...] = ()
    over_covered: Mapping[int, tuple[UUID, ...]] = field(default_factory=dict)
    excluded: tuple[int, ...] = ()
    excluded_conflicts: tuple[int, ...] = ()
    dangling: tuple[int, ...] = ()

    @property
    def covered_count(self) -> int:
        return len(self.covered)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)

    @property
    def uncovered_count(self) -> int:
        return len(self.uncovered)

    @property
    def percent_covered(self) -> Decimal:
        if self.total_rows == 0:
            return Decimal("100.00")
        accounted = len(set(self.covered) | set(self.excluded))
        pct = Decimal(accounted) * Decimal(100) / Decimal(self.total_rows)
        return pct.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)

    @property
    def is_complete(self) -> bool:
        return not self.uncovered and not self.over_covered

    def disposition(self, ordinal: int) -> RowDisposition:
        if ordinal in self.over_covered:
            return RowDisposition.OVER_COVERED
        if ordinal in self.covered:
            return RowDisposition.COVERED
        if ordinal in self.excluded:
            return RowDisposition.EXCLUDED
        return RowDisposition.UNCOVERED

    def to_summary(self) -> dict:
        return {
            "total": self.total_rows,
            "covered": self.covered_count,
            "excluded": self.excluded_count,
            "uncovered": self.uncovered_count,
            "over_covered": len(self.over_covered),
            "percent_covered": str(self.percent_covered),
            "uncovered_rows": list(self.uncovered),
        }


def rows_covered_by(txn: LedgerTransaction) -> frozenset[int]:
    """Header rows plus any rows referenced by individual legs."""
    ordinals = set(txn.source_rows)
    for line in txn.lines:
        ordinals.update(line.source_rows)
    return frozenset(ordinals)


@traced_engine("coverage_index", "1.0")
def compute_coverage(
    rows: Iterable[SourceRow | int],
    transactions: Iterable[LedgerTransaction],
    excluded: Iterable[int] = (),
) -> CoverageReport:
    """Build a CoverageReport from scratch."""
    ordinals = sorted(
        {r.global_ordinal if isinstance(r, SourceRow) else int(r) for r in rows}
    )
    known = set(ordinals)
    excluded_set = set(excluded) & known

    links: dict[int, list[UUID]] = {}
    dangling: set[int] = set()
    for txn in transactions:
        for ordinal in rows_covered_by(txn):
            if ordinal not in known:
                dangling.add(ordinal)
                continue
            links.setdefault(ordinal, []).append(txn.id)

    covered = {o: tuple(ids) for o, ids in sorted(links.items())}
    over_covered = {o: ids for o, ids in covered.items() if len(ids) > 1}
    uncovered = tuple(o for o in ordinals if o not in covered and o not in excluded_set)
    conflicts = tuple(sorted(o for o in excluded_set if o in covered))

    return CoverageReport(
        total_rows=len(ordinals),
        covered=covered,
        uncovered=uncovered,
        over_covered=over_covered,
        excluded=tuple(sorted(excluded_set)),
        excluded_conflicts=conflicts,
        dangling=tuple(sorted(dangling)),
    )
