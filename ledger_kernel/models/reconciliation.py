"""
Module: ledger_kernel.models.reconciliation
Responsibility: ORM persistence for the reconciliation audit trail -- applied
    deltas (idempotency + undo log), reconciliation runs, and investigations.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (account_id, delta_id) is unique: re-applying an identical delta is
      detected here and becomes a no-op.
    - An applied delta keeps the exact prior state it replaced (``undo``),
      so a fix that worsens the ledger can be reverted.
    - At most one run per account is RUNNING at a time (advisory lock in
      the service layer; the row records it for recovery).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base, UUIDString


class RunStatus(str, Enum):
    RUNNING = "running"
    RECONCILED = "reconciled"
    PARTIALLY_RECONCILED = "partially_reconciled"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not RunStatus.RUNNING


class InvestigationStatus(str, Enum):
    APPLIED = "applied"
    PENDING_APPROVAL = "pending_approval"
    RECORDED = "recorded"
    UNRESOLVED = "unresolved"
    REJECTED = "rejected"


class AppliedDeltaModel(Base):
    """One applied TransactionDelta with enough state to undo it."""

    __tablename__ = "ledger_applied_deltas"

    __table_args__ = (
        UniqueConstraint("account_id", "delta_id", name="uq_applied_delta"),
        Index("idx_applied_delta_run", "run_id"),
    )

    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    delta_id: Mapped[str] = mapped_column(String(64), nullable=False)
    run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    action: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False, default="")
    payload: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    # Serialized transactions removed and ids created, used by revert.
    undo: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    reverted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class ReconciliationRunModel(Base):
    """Header and summary of one reconciliation run."""

    __tablename__ = "ledger_reconciliation_runs"

    __table_args__ = (Index("idx_recon_run_account", "account_id", "status"),)

    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    max_rounds: Mapped[int] = mapped_column(nullable=False)
    rounds_used: Mapped[int] = mapped_column(nullable=False, default=0)
    fixes_applied: Mapped[int] = mapped_column(nullable=False, default=0)
    initial_max_discrepancy: Mapped[Decimal | None] = mapped_column(nullable=True)
    final_max_discrepancy: Mapped[Decimal | None] = mapped_column(nullable=True)
    fully_reconciled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    started_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    finished_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    abort_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class InvestigationModel(Base):
    """One oracle research pass for one discrepancy."""

    __tablename__ = "ledger_investigations"

    __table_args__ = (
        Index("idx_investigation_run", "run_id"),
        Index("idx_investigation_account_status", "account_id", "status"),
    )

    run_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_reconciliation_runs.id", ondelete="SET NULL"),
        nullable=True,
    )
    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    round_number: Mapped[int] = mapped_column(nullable=False)

    discrepancy_type: Mapped[str] = mapped_column(String(40), nullable=False)
    discrepancy_severity: Mapped[str] = mapped_column(String(20), nullable=False)
    discrepancy_amount: Mapped[Decimal] = mapped_column(nullable=False)
    start_date: Mapped[date | None] = mapped_column(nullable=True)
    end_date: Mapped[date | None] = mapped_column(nullable=True)
    affected_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    hypothesis: Mapped[str] = mapped_column(Text, nullable=False, default="")
    evidence: Mapped[str] = mapped_column(Text, nullable=False, default="")
    uncertainties: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    needs_more_data: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    fixes: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    status: Mapped[str] = mapped_column(String(30), nullable=False)
    error_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    applied_fix_index: Mapped[int | None] = mapped_column(nullable=True)
    applied_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
