"""
ledger_services.construction_service -- Rows to persisted transactions.

Responsibility:
    Group rows into transaction units, build each unit on a worker pool,
    report the units that could not be built, persist the rest together
    with any newly created assets, and return the coverage that results.

Architecture position:
    Services -- orchestrates the pure grouper and builder engines over the
    ledger repository.  Flushes, never commits.

Invariants enforced:
    - A unit that fails construction is skipped and reported; the batch
      proceeds.  Nothing is force-balanced.
    - Results are collected in unit order regardless of worker scheduling,
      so re-running on an unchanged row set persists the same transactions.
    - A built transaction touching a row that is already covered or
      excluded is not persisted (no double coverage).
    - The session is only used from the calling thread; workers touch the
      in-memory AssetRegistry alone.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Sequence

from ledger_engines.builder import TransactionBuilder
from ledger_engines.coverage import CoverageReport, compute_coverage, rows_covered_by
from ledger_engines.settlement import SettlementPolicy, TransactionUnit, group_rows
from ledger_kernel.domain.ledger import LedgerTransaction
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.exceptions import ConstructionError
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_services.ledger_repository import LedgerRepository

logger = get_logger("services.construction")


@dataclass(frozen=True)
class SkippedUnit:
    """A unit that could not be built, with enough detail to find it."""

    row_ordinals: tuple[int, ...]
    error_code: str
    message: str
    row_date: date | None = None
    action: str = ""

    def to_dict(self) -> dict:
        return {
            "row_ordinals": list(self.row_ordinals),
            "error_code": self.error_code,
            "message": self.message,
            "date": self.row_date.isoformat() if self.row_date else None,
            "action": self.action,
        }


@dataclass(frozen=True)
class ConstructionReport:
    unit_count: int
    transactions: tuple[LedgerTransaction, ...] = ()
    skipped: tuple[SkippedUnit, ...] = ()
    already_covered: tuple[tuple[int, ...], ...] = ()
    degenerate_units: tuple[tuple[int, ...], ...] = ()
    coverage: CoverageReport | None = None

    @property
    def built_count(self) -> int:
        return len(self.transactions)

    @property
    def skipped_count(self) -> int:
        return len(self.skipped)


def _build_one(builder: TransactionBuilder, unit: TransactionUnit, context: dict[str, str]):
    # Pool threads start with an empty log context; rebind the caller's.
    with LogContext.bind(**context):
        try:
            return builder.build(unit), None
        except ConstructionError as exc:
            return None, _skipped(unit, exc)


def _skipped(unit: TransactionUnit, exc: ConstructionError) -> SkippedUnit:
    first = unit.primary or (unit.rows[0] if unit.rows else None)
    return SkippedUnit(
        row_ordinals=unit.row_ordinals,
        error_code=exc.code,
        message=str(exc),
        row_date=first.mapped.date if first is not None else None,
        action=first.mapped.action if first is not None else "",
    )


class ConstructionService:
    """
    Builds and persists the ledger for one account.

    Contract:
        ``build(rows)`` is pure apart from asset creation in the registry.
        ``construct(rows)`` builds, persists and reports coverage.
    """

    def __init__(
        self,
        repository: LedgerRepository,
        builder: TransactionBuilder,
        policy: SettlementPolicy,
        max_workers: int = 4,
    ):
        self._repo = repository
        self._builder = builder
        self._policy = policy
        self._max_workers = max(1, max_workers)

    def build(
        self, rows: Sequence[SourceRow]
    ) -> tuple[tuple[TransactionUnit, ...], list[LedgerTransaction], list[SkippedUnit]]:
        units = group_rows(list(rows), self._policy)
        context = {**LogContext.get_all(), "account_id": self._repo.account_id}

        if self._max_workers == 1 or len(units) < 2:
            results = [_build_one(self._builder, u, context) for u in units]
        else:
            with ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="ledger-build"
            ) as pool:
                results = list(pool.map(lambda u: _build_one(self._builder, u, context), units))

        built = [txn for txn, _ in results if txn is not None]
        skipped = [skip for _, skip in results if skip is not None]
        for skip in skipped:
            logger.warning("unit_skipped", extra=skip.to_dict())
        return units, built, skipped

    def construct(self, rows: Sequence[SourceRow] | None = None) -> ConstructionReport:
        if rows is None:
            rows = self._repo.load_rows()
        units, built, skipped = self.build(rows)

        taken = self._repo.covered_rows() | self._repo.excluded_rows()
        persisted: list[LedgerTransaction] = []
        already: list[tuple[int, ...]] = []
        for txn in built:
            ordinals = rows_covered_by(txn)
            if ordinals & taken:
                already.append(txn.source_rows)
                continue
            self._repo.add_transaction(txn)
            taken |= ordinals
            persisted.append(txn)

        # Registry writes happened on workers; the session is ours alone.
        self._repo.save_assets(self._builder.registry.all_assets())

        coverage = compute_coverage(
            rows, self._repo.load_transactions(), self._repo.excluded_rows()
        )
        report = ConstructionReport(
            unit_count=len(units),
            transactions=tuple(persisted),
            skipped=tuple(skipped),
            already_covered=tuple(already),
            degenerate_units=tuple(u.row_ordinals for u in units if u.degenerate),
            coverage=coverage,
        )
        logger.info(
            "construction_completed",
            extra={
                "unit_count": report.unit_count,
                "built_count": report.built_count,
                "skipped_count": report.skipped_count,
                "already_covered_count": len(already),
                "percent_covered": str(coverage.percent_covered),
                "over_covered_count": len(coverage.over_covered),
            },
        )
        return report
