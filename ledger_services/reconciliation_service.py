"""
ledger_services.reconciliation_service -- Iterative, confidence-gated reconciliation.

Responsibility:
    Drive one account's ledger toward agreement with its ground-truth
    balance readings: scan for discrepancies, ask the oracle to investigate
    each, apply fixes the gating policy allows, verify them against a fresh
    scan, and repeat up to a fixed round cap.

Architecture position:
    Services -- stateful orchestration over the pure checkpoint, detector,
    context and gating engines, the Delta Applier and the oracle boundary.
    Owns commit boundaries: commits after every investigation so an
    interruption never leaves a partially applied fix.

State machine (per run):
    Scan -> clean                       -> RECONCILED
         -> discrepancies, rounds left  -> Investigate each -> Apply -> Scan
         -> discrepancies, cap reached  -> PARTIALLY_RECONCILED
    Cancellation between investigations -> CANCELLED
    Storage failure / unrecoverable invariant violation -> FAILED (raises)

Invariants enforced:
    - Only one run per account at a time (AccountLockRegistry).
    - A fix is applied inside its own SAVEPOINT together with the
      verification scan; a fix that does not shrink its discrepancy,
      introduces a new one, or double-covers a row is rolled back whole.
    - Fixes below the approval threshold are recorded, never applied.
    - Recovery recomputes checkpoints from persisted transactions; no
      in-memory progress is trusted across runs.

Failure modes:
    - ReconciliationInProgressError: the account lock is held.
    - ReconciliationAbortedError: storage failure or an invariant the
      Delta Applier could not undo; the run row is marked FAILED.
    - FixNotFoundError: approve_fix()/revert_fix() named no eligible fix.

Audit relevance:
    Every investigation is persisted with the oracle's hypothesis,
    evidence, fixes and the index of the fix applied (if any); every
    applied delta is persisted with its undo record.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ledger_config.schema import InstitutionProfile, ReconciliationSettings
from ledger_engines.builder import TransactionBuilder
from ledger_engines.coverage import CoverageReport, compute_coverage
from ledger_engines.investigation import (
    GatingPolicy,
    InvestigationFindings,
    ProposedFix,
    Thoroughness,
    build_request,
    gate_fixes,
)
from ledger_engines.reconciliation import (
    BalanceDateBasis,
    CheckpointBuilder,
    Discrepancy,
    DiscrepancyDetector,
    DiscrepancyType,
    ScanResult,
    scan,
)
from ledger_kernel.domain.asset_registry import AssetRegistry
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.domain.values import BALANCE_TOLERANCE, ZERO, Severity
from ledger_kernel.exceptions import (
    DeltaApplicationError,
    FixNotFoundError,
    InvariantViolationError,
    OracleError,
    ReconciliationAbortedError,
    StorageError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.reconciliation import (
    InvestigationModel,
    InvestigationStatus,
    ReconciliationRunModel,
    RunStatus,
)
from ledger_services.account_lock import AccountLockRegistry, default_lock_registry
from ledger_services.delta_applier import DeltaApplier
from ledger_services.ledger_repository import LedgerRepository
from ledger_services.oracle import InvestigationOracle, TimeoutOracle, parse_fix

logger = get_logger("services.reconciliation")


class CancellationToken:
    """Cooperative cancel flag, checked between investigations."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class ReconciliationSummary:
    run_id: UUID
    account_id: str
    status: RunStatus
    rounds_used: int
    fixes_applied: int
    initial_max_discrepancy: Decimal
    final_max_discrepancy: Decimal
    fully_reconciled: bool
    remaining: tuple[Discrepancy, ...] = ()
    pending_approvals: tuple[UUID, ...] = ()
    unresolved_count: int = 0
    coverage: CoverageReport | None = field(default=None, compare=False)

    def to_dict(self) -> dict:
        return {
            "runId": str(self.run_id),
            "accountId": self.account_id,
            "status": self.status.value,
            "roundsUsed": self.rounds_used,
            "fixesApplied": self.fixes_applied,
            "initialMaxDiscrepancy": str(self.initial_max_discrepancy),
            "finalMaxDiscrepancy": str(self.final_max_discrepancy),
            "fullyReconciled": self.fully_reconciled,
            "remaining": [d.to_dict() for d in self.remaining],
            "pendingApprovals": [str(i) for i in self.pending_approvals],
            "unresolvedCount": self.unresolved_count,
            "coverage": self.coverage.to_summary() if self.coverage else None,
        }


class _FixRejected(Exception):
    """Raised inside a fix's SAVEPOINT to roll it back."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


def _same_problem(a: Discrepancy, b: Discrepancy) -> bool:
    if a.discrepancy_type != b.discrepancy_type:
        return False
    if set(a.affected_rows) & set(b.affected_rows):
        return True
    if set(a.affected_transactions) & set(b.affected_transactions):
        return True
    return not a.affected_rows and not b.affected_rows and a.start_date == b.start_date


def _investigation_order(discrepancies: Sequence[Discrepancy]) -> list[Discrepancy]:
    # Stable: detector order breaks ties within a severity.
    return sorted(discrepancies, key=lambda d: -d.severity.rank)


class ReconciliationService:
    """
    Reconciles one account.

    Contract:
        ``run()`` executes a new run to a terminal state and returns its
        summary; ``resume(run_id)`` continues an interrupted run;
        ``approve_fix()`` applies a held fix through the same verified path.

    Non-goals:
        Generating hypotheses.  The oracle does that.
    """

    def __init__(
        self,
        session: Session,
        account_id: str,
        oracle: InvestigationOracle,
        registry: AssetRegistry,
        balance_instrument: str | None = None,
        basis: BalanceDateBasis = BalanceDateBasis.TRADE,
        settings: ReconciliationSettings | None = None,
        institution: str | None = None,
        clock: Clock | None = None,
        lock_registry: AccountLockRegistry | None = None,
        detector: DiscrepancyDetector | None = None,
    ):
        self._session = session
        self._account_id = account_id
        self._oracle = oracle
        self._settings = settings or ReconciliationSettings()
        self._clock = clock or SystemClock()
        self._locks = lock_registry or default_lock_registry()
        self._detector = detector or DiscrepancyDetector()
        self._balance_instrument = balance_instrument
        self._basis = basis
        self._gating = GatingPolicy(
            auto_apply_threshold=self._settings.auto_apply_threshold,
            approval_threshold=self._settings.approval_threshold,
        )
        self._thoroughness = Thoroughness(self._settings.thoroughness)

        self._repo = LedgerRepository(session, account_id)
        self._builder = TransactionBuilder(account_id, registry, institution=institution)
        self._applier = DeltaApplier(self._repo, self._builder, clock=self._clock)

    @classmethod
    def from_profile(
        cls,
        session: Session,
        account_id: str,
        profile: InstitutionProfile,
        oracle: InvestigationOracle,
        registry: AssetRegistry,
        **kwargs,
    ) -> "ReconciliationService":
        for alias, canonical in profile.asset_aliases:
            registry.register_mapping(profile.name, alias, canonical)
        return cls(
            session,
            account_id,
            oracle,
            registry,
            balance_instrument=profile.balance_instrument,
            basis=BalanceDateBasis(profile.balance_date_basis),
            settings=profile.reconciliation,
            institution=profile.name,
            **kwargs,
        )

    @property
    def gating_policy(self) -> GatingPolicy:
        return self._gating

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, cancel_token: CancellationToken | None = None) -> ReconciliationSummary:
        with self._locks.hold(self._account_id), LogContext.bind(account_id=self._account_id):
            run = ReconciliationRunModel(
                account_id=self._account_id,
                status=RunStatus.RUNNING.value,
                max_rounds=self._settings.max_rounds,
                rounds_used=0,
                fixes_applied=0,
                started_at=self._clock.now(),
            )
            try:
                self._session.add(run)
                self._session.commit()
            except SQLAlchemyError as exc:
                self._session.rollback()
                raise StorageError("start_run", str(exc)) from exc
            return self._drive(run, cancel_token or CancellationToken())

    def resume(
        self, run_id: UUID, cancel_token: CancellationToken | None = None
    ) -> ReconciliationSummary:
        """Continue an interrupted run from persisted state."""
        with self._locks.hold(self._account_id), LogContext.bind(account_id=self._account_id):
            run = self._session.get(ReconciliationRunModel, run_id)
            if run is None or run.account_id != self._account_id:
                raise InvariantViolationError("run_exists", f"no run {run_id} for {self._account_id}")
            if RunStatus(run.status).is_terminal:
                return self.summary(run.id)
            logger.info(
                "reconciliation_resumed",
                extra={"run_id": str(run.id), "rounds_used": run.rounds_used},
            )
            return self._drive(run, cancel_token or CancellationToken())

    def interrupted_runs(self) -> list[UUID]:
        stmt = select(ReconciliationRunModel.id).where(
            ReconciliationRunModel.account_id == self._account_id,
            ReconciliationRunModel.status == RunStatus.RUNNING.value,
        )
        return list(self._session.scalars(stmt))

    def approve_fix(self, investigation_id: UUID, fix_index: int) -> bool:
        """
        Apply a fix held for approval.  Returns False when verification
        rejected it (the investigation stays pending).

        Raises:
            FixNotFoundError: no pending investigation, index out of range,
                or the fix is below the approval threshold.
        """
        with self._locks.hold(self._account_id), LogContext.bind(account_id=self._account_id):
            inv = self._session.get(InvestigationModel, investigation_id)
            if (
                inv is None
                or inv.account_id != self._account_id
                or inv.status != InvestigationStatus.PENDING_APPROVAL.value
                or not 0 <= fix_index < len(inv.fixes or [])
            ):
                raise FixNotFoundError(str(investigation_id), fix_index)
            fix = parse_fix(inv.fixes[fix_index])
            if fix.confidence < self._gating.approval_threshold:
                raise FixNotFoundError(str(investigation_id), fix_index)

            rows = self._repo.load_rows()
            checkpoints = CheckpointBuilder(self._balance_instrument, self._basis)
            before = self._scan(checkpoints, rows)
            try:
                applied = self._apply_verified(
                    fix, _discrepancy_of(inv), before, checkpoints, rows, inv.run_id
                )
                if applied:
                    inv.status = InvestigationStatus.APPLIED.value
                    inv.applied_fix_index = fix_index
                    inv.applied_at = self._clock.now()
                    self._persist_running_balances(checkpoints)
                self._session.commit()
            except SQLAlchemyError as exc:
                self._session.rollback()
                raise StorageError("approve_fix", str(exc)) from exc

            logger.info(
                "fix_approval_processed",
                extra={
                    "investigation_id": str(investigation_id),
                    "fix_index": fix_index,
                    "applied": applied,
                },
            )
            return applied

    def revert_fix(self, investigation_id: UUID) -> bool:
        """Undo the fix an investigation applied.  Marks it REJECTED."""
        with self._locks.hold(self._account_id), LogContext.bind(account_id=self._account_id):
            inv = self._session.get(InvestigationModel, investigation_id)
            if (
                inv is None
                or inv.account_id != self._account_id
                or inv.status != InvestigationStatus.APPLIED.value
                or inv.applied_fix_index is None
            ):
                raise FixNotFoundError(str(investigation_id), -1)
            fix = parse_fix(inv.fixes[inv.applied_fix_index])
            reverted = False
            for delta in reversed(fix.deltas):
                reverted = self._applier.revert(delta.delta_id) or reverted
            inv.status = InvestigationStatus.REJECTED.value
            self._session.commit()
            logger.info(
                "fix_reverted",
                extra={"investigation_id": str(investigation_id), "reverted": reverted},
            )
            return reverted

    def summary(self, run_id: UUID) -> ReconciliationSummary:
        run = self._session.get(ReconciliationRunModel, run_id)
        if run is None:
            raise InvariantViolationError("run_exists", f"no run {run_id}")
        rows = self._repo.load_rows()
        checkpoints = CheckpointBuilder(self._balance_instrument, self._basis)
        current = self._scan(checkpoints, rows)
        return self._summary(run, current, rows)

    # ------------------------------------------------------------------
    # Run loop
    # ------------------------------------------------------------------

    def _drive(self, run: ReconciliationRunModel, token: CancellationToken) -> ReconciliationSummary:
        run_id = run.id
        oracle = TimeoutOracle(self._oracle, self._settings.oracle_timeout_seconds)
        with LogContext.bind(run_id=str(run_id)):
            try:
                return self._execute(run, token, oracle)
            except (SQLAlchemyError, StorageError, InvariantViolationError) as exc:
                self._abort(run_id, exc)
                raise ReconciliationAbortedError(
                    self._account_id, str(run_id), str(exc)
                ) from exc
            finally:
                oracle.close()

    def _execute(
        self, run: ReconciliationRunModel, token: CancellationToken, oracle: TimeoutOracle
    ) -> ReconciliationSummary:
        rows = self._repo.load_rows()
        checkpoints = CheckpointBuilder(self._balance_instrument, self._basis)
        current = self._scan(checkpoints, rows)
        if run.initial_max_discrepancy is None:
            run.initial_max_discrepancy = current.max_discrepancy
            self._session.commit()

        logger.info(
            "reconciliation_started",
            extra={
                "row_count": len(rows),
                "discrepancy_count": len(current.discrepancies),
                "max_discrepancy": str(current.max_discrepancy),
                "max_rounds": run.max_rounds,
            },
        )

        round_no = run.rounds_used
        while not current.is_clean and round_no < run.max_rounds:
            if token.cancelled:
                return self._finish(run, RunStatus.CANCELLED, current, rows, checkpoints)
            round_no += 1
            logger.info(
                "reconciliation_round_started",
                extra={"round": round_no, "discrepancy_count": len(current.discrepancies)},
            )

            for target in _investigation_order(current.discrepancies):
                if token.cancelled:
                    break
                latest = self._scan(checkpoints, rows)
                if target.discrepancy_id not in {d.discrepancy_id for d in latest.discrepancies}:
                    logger.debug(
                        "discrepancy_no_longer_present",
                        extra={"discrepancy_id": target.discrepancy_id},
                    )
                    continue
                if self._investigate(run, round_no, target, latest, checkpoints, rows, oracle):
                    run.fixes_applied += 1
                self._session.commit()

            run.rounds_used = round_no
            self._session.commit()
            current = self._scan(checkpoints, rows)
            if token.cancelled:
                return self._finish(run, RunStatus.CANCELLED, current, rows, checkpoints)

        if current.is_clean:
            run.rounds_used = max(round_no, 1)
            return self._finish(run, RunStatus.RECONCILED, current, rows, checkpoints)
        return self._finish(run, RunStatus.PARTIALLY_RECONCILED, current, rows, checkpoints)

    def _finish(
        self,
        run: ReconciliationRunModel,
        status: RunStatus,
        current: ScanResult,
        rows: Sequence[SourceRow],
        checkpoints: CheckpointBuilder,
    ) -> ReconciliationSummary:
        run.status = status.value
        run.final_max_discrepancy = current.max_discrepancy
        run.fully_reconciled = status == RunStatus.RECONCILED
        run.finished_at = self._clock.now()
        self._persist_running_balances(checkpoints)
        self._session.commit()

        summary = self._summary(run, current, rows)
        logger.info(
            "reconciliation_completed",
            extra={
                "status": status.value,
                "rounds_used": run.rounds_used,
                "fixes_applied": run.fixes_applied,
                "initial_max_discrepancy": str(run.initial_max_discrepancy),
                "final_max_discrepancy": str(run.final_max_discrepancy),
                "remaining_count": len(current.discrepancies),
                "pending_approval_count": len(summary.pending_approvals),
            },
        )
        return summary

    def _abort(self, run_id: UUID, exc: Exception) -> None:
        logger.critical(
            "reconciliation_aborted",
            extra={"run_id": str(run_id), "error": str(exc)},
            exc_info=exc,
        )
        try:
            self._session.rollback()
            stored = self._session.get(ReconciliationRunModel, run_id)
            if stored is not None:
                stored.status = RunStatus.FAILED.value
                stored.abort_reason = str(exc)[:2000]
                stored.finished_at = self._clock.now()
                self._session.commit()
        except SQLAlchemyError:
            self._session.rollback()
            logger.critical(
                "reconciliation_abort_not_recorded",
                extra={"run_id": str(run_id)},
                exc_info=True,
            )

    # ------------------------------------------------------------------
    # Investigation
    # ------------------------------------------------------------------

    def _investigate(
        self,
        run: ReconciliationRunModel,
        round_no: int,
        target: Discrepancy,
        before: ScanResult,
        checkpoints: CheckpointBuilder,
        rows: Sequence[SourceRow],
        oracle: TimeoutOracle,
    ) -> bool:
        inv = InvestigationModel(
            run_id=run.id,
            account_id=self._account_id,
            round_number=round_no,
            discrepancy_type=target.discrepancy_type.value,
            discrepancy_severity=target.severity.value,
            discrepancy_amount=target.amount,
            start_date=target.start_date,
            end_date=target.end_date,
            affected_rows=list(target.affected_rows),
            status=InvestigationStatus.UNRESOLVED.value,
            created_at=self._clock.now(),
        )
        self._session.add(inv)
        self._session.flush()

        request = build_request(
            self._account_id,
            target,
            rows,
            self._repo.load_transactions(),
            before.checkpoints,
            thoroughness=self._thoroughness,
            context_days=self._settings.context_days,
        )
        try:
            findings = oracle.investigate(request)
        except OracleError as exc:
            inv.error_code = exc.code
            logger.warning(
                "investigation_unresolved",
                extra={"discrepancy_id": target.discrepancy_id, "error_code": exc.code},
            )
            return False
        except Exception as exc:
            # Any other oracle failure leaves only this discrepancy unresolved.
            inv.error_code = "ORACLE_FAILURE"
            logger.warning(
                "investigation_unresolved",
                extra={"discrepancy_id": target.discrepancy_id, "error": repr(exc)},
                exc_info=True,
            )
            return False

        self._record_findings(inv, findings)
        gated = gate_fixes(findings.fixes, self._gating)

        for index in gated.auto_apply:
            if self._apply_verified(
                findings.fixes[index], target, before, checkpoints, rows, run.id
            ):
                inv.status = InvestigationStatus.APPLIED.value
                inv.applied_fix_index = index
                inv.applied_at = self._clock.now()
                return True

        if gated.needs_approval:
            inv.status = InvestigationStatus.PENDING_APPROVAL.value
        elif findings.fixes:
            inv.status = InvestigationStatus.RECORDED.value
        logger.info(
            "investigation_recorded",
            extra={
                "discrepancy_id": target.discrepancy_id,
                "status": inv.status,
                "fix_count": len(findings.fixes),
            },
        )
        return False

    def _record_findings(self, inv: InvestigationModel, findings: InvestigationFindings) -> None:
        inv.hypothesis = findings.hypothesis
        inv.evidence = findings.evidence_analysis
        inv.uncertainties = list(findings.uncertainties)
        inv.needs_more_data = findings.needs_more_data
        inv.fixes = [fix.to_dict() for fix in findings.fixes]

    # ------------------------------------------------------------------
    # Verified apply
    # ------------------------------------------------------------------

    def _apply_verified(
        self,
        fix: ProposedFix,
        target: Discrepancy,
        before: ScanResult,
        checkpoints: CheckpointBuilder,
        rows: Sequence[SourceRow],
        run_id: UUID | None,
    ) -> bool:
        ids_before = {t.id for t in self._repo.load_transactions()}
        excluded_before = self._repo.excluded_rows()
        over_before = set(compute_coverage(rows, self._repo.load_transactions(), excluded_before).over_covered)

        try:
            with self._session.begin_nested():
                for delta in fix.deltas:
                    self._applier.apply(delta, run_id=run_id)
                after = self._scan(checkpoints, rows)
                self._verify(target, before, after, rows, over_before)
        except (DeltaApplicationError, _FixRejected) as exc:
            reason = exc.reason if isinstance(exc, _FixRejected) else str(exc)
            logger.warning(
                "fix_rolled_back",
                extra={
                    "discrepancy_id": target.discrepancy_id,
                    "confidence": fix.confidence,
                    "reason": reason,
                },
            )
            ids_after = {t.id for t in self._repo.load_transactions()}
            if ids_after != ids_before or self._repo.excluded_rows() != excluded_before:
                raise InvariantViolationError(
                    "fix_rollback",
                    f"ledger differs from its pre-fix state after rolling back "
                    f"fix for discrepancy {target.discrepancy_id}",
                )
            # Refresh the memo against the restored ledger.
            self._scan(checkpoints, rows)
            return False

        logger.info(
            "fix_applied",
            extra={
                "discrepancy_id": target.discrepancy_id,
                "confidence": fix.confidence,
                "delta_count": len(fix.deltas),
                "max_discrepancy_before": str(before.max_discrepancy),
                "max_discrepancy_after": str(after.max_discrepancy),
            },
        )
        return True

    def _verify(
        self,
        target: Discrepancy,
        before: ScanResult,
        after: ScanResult,
        rows: Sequence[SourceRow],
        over_before: set[int],
    ) -> None:
        still_open = [d for d in after.discrepancies if _same_problem(d, target)]
        remaining = sum((d.magnitude for d in still_open), ZERO)
        if still_open and remaining >= target.magnitude:
            raise _FixRejected(f"discrepancy did not shrink ({remaining} >= {target.magnitude})")

        new = [
            d for d in after.discrepancies
            if not any(_same_problem(d, b) for b in before.discrepancies)
        ]
        if new:
            raise _FixRejected(f"fix introduced {len(new)} new discrepancy(ies)")

        if after.max_discrepancy > before.max_discrepancy + BALANCE_TOLERANCE:
            raise _FixRejected(
                f"max discrepancy grew from {before.max_discrepancy} to {after.max_discrepancy}"
            )

        coverage = compute_coverage(rows, self._repo.load_transactions(), self._repo.excluded_rows())
        if set(coverage.over_covered) - over_before:
            raise _FixRejected("fix covers rows already covered by another transaction")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _scan(self, checkpoints: CheckpointBuilder, rows: Sequence[SourceRow]) -> ScanResult:
        return scan(checkpoints, rows, self._repo.load_transactions(), self._detector)

    def _persist_running_balances(self, checkpoints: CheckpointBuilder) -> None:
        self._repo.write_running_balances(checkpoints.running_balances())

    def _summary(
        self, run: ReconciliationRunModel, current: ScanResult, rows: Sequence[SourceRow]
    ) -> ReconciliationSummary:
        investigations = list(
            self._session.scalars(
                select(InvestigationModel).where(InvestigationModel.run_id == run.id)
            )
        )
        return ReconciliationSummary(
            run_id=run.id,
            account_id=self._account_id,
            status=RunStatus(run.status),
            rounds_used=run.rounds_used,
            fixes_applied=run.fixes_applied,
            initial_max_discrepancy=(
                run.initial_max_discrepancy if run.initial_max_discrepancy is not None else ZERO
            ),
            final_max_discrepancy=(
                run.final_max_discrepancy
                if run.final_max_discrepancy is not None
                else current.max_discrepancy
            ),
            fully_reconciled=run.fully_reconciled,
            remaining=current.discrepancies,
            pending_approvals=tuple(
                i.id for i in investigations
                if i.status == InvestigationStatus.PENDING_APPROVAL.value
            ),
            unresolved_count=sum(
                1 for i in investigations if i.status == InvestigationStatus.UNRESOLVED.value
            ),
            coverage=compute_coverage(
                rows, self._repo.load_transactions(), self._repo.excluded_rows()
            ),
        )


def _discrepancy_of(inv: InvestigationModel) -> Discrepancy:
    return Discrepancy(
        discrepancy_type=DiscrepancyType(inv.discrepancy_type),
        amount=inv.discrepancy_amount,
        severity=Severity(inv.discrepancy_severity),
        start_date=inv.start_date,
        end_date=inv.end_date,
        summary="",
        affected_rows=tuple(inv.affected_rows or ()),
    )
