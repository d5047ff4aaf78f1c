"""
ledger_services.ledger_repository -- Persistence gateway for one account's ledger.

Responsibility:
    Read and write source rows, assets, transactions, exclusions and the
    derived running-balance columns.  Every other service goes through
    this class rather than issuing its own queries.

Architecture position:
    Services -- imperative shell.  Flushes, never commits; the
    reconciliation orchestrator and callers own transaction boundaries.

Invariants enforced:
    - Transactions are returned in fold order (date, minimum row ordinal).
    - A source row is stored once per (account, global ordinal).
    - An excluded row keeps its data; exclusion is a flag that can be
      lifted by reverting the delta that set it.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Sequence
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from ledger_kernel.domain.assets import Asset
from ledger_kernel.domain.ledger import LedgerTransaction
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.ledger import (
    AssetModel,
    ExcludedRowModel,
    SourceRowModel,
    TransactionModel,
)

logger = get_logger("services.ledger_repository")


class LedgerRepository:
    """SQLAlchemy-backed store for one account."""

    def __init__(self, session: Session, account_id: str):
        self._session = session
        self._account_id = account_id

    @property
    def account_id(self) -> str:
        return self._account_id

    @property
    def session(self) -> Session:
        return self._session

    # ------------------------------------------------------------------
    # Source rows
    # ------------------------------------------------------------------

    def save_rows(self, rows: Sequence[SourceRow]) -> int:
        for row in rows:
            self._session.add(SourceRowModel.from_domain(self._account_id, row))
        self._session.flush()
        logger.info("source_rows_saved", extra={"row_count": len(rows)})
        return len(rows)

    def load_rows(self) -> list[SourceRow]:
        stmt = (
            select(SourceRowModel)
            .where(SourceRowModel.account_id == self._account_id)
            .order_by(SourceRowModel.global_ordinal)
        )
        return [m.to_domain() for m in self._session.scalars(stmt)]

    def next_ordinal(self) -> int:
        stmt = select(func.max(SourceRowModel.global_ordinal)).where(
            SourceRowModel.account_id == self._account_id
        )
        current = self._session.execute(stmt).scalar()
        return 0 if current is None else current + 1

    # ------------------------------------------------------------------
    # Assets (global, not per account)
    # ------------------------------------------------------------------

    def save_assets(self, assets: Iterable[Asset]) -> int:
        assets = list(assets)
        if not assets:
            return 0
        known = set(
            self._session.scalars(
                select(AssetModel.symbol).where(AssetModel.symbol.in_([a.symbol for a in assets]))
            )
        )
        added = 0
        for asset in assets:
            if asset.symbol in known:
                continue
            self._session.add(AssetModel.from_domain(asset))
            known.add(asset.symbol)
            added += 1
        self._session.flush()
        if added:
            logger.info("assets_saved", extra={"asset_count": added})
        return added

    def load_assets(self) -> list[Asset]:
        stmt = select(AssetModel).order_by(AssetModel.symbol)
        return [m.to_domain() for m in self._session.scalars(stmt)]

    # ------------------------------------------------------------------
    # Transactions
    # ------------------------------------------------------------------

    def _transaction_query(self):
        return (
            select(TransactionModel)
            .where(TransactionModel.account_id == self._account_id)
            .order_by(TransactionModel.txn_date, TransactionModel.min_ordinal)
        )

    def load_transaction_models(self) -> list[TransactionModel]:
        return list(self._session.scalars(self._transaction_query()))

    def load_transactions(self) -> list[LedgerTransaction]:
        return [m.to_domain() for m in self.load_transaction_models()]

    def get_transaction(self, transaction_id: UUID) -> TransactionModel | None:
        model = self._session.get(TransactionModel, transaction_id)
        if model is None or model.account_id != self._account_id:
            return None
        return model

    def find_transaction_by_rows(self, row_ordinals: Sequence[int]) -> TransactionModel | None:
        """The transaction whose contributing rows are exactly ``row_ordinals``."""
        wanted = sorted(set(row_ordinals))
        if not wanted:
            return None
        stmt = self._transaction_query().where(TransactionModel.min_ordinal == wanted[0])
        for model in self._session.scalars(stmt):
            if sorted(set(model.source_rows or ())) == wanted:
                return model
        return None

    def add_transaction(
        self,
        txn: LedgerTransaction,
        origin: str = "import",
        delta_id: str | None = None,
    ) -> TransactionModel:
        model = TransactionModel.from_domain(self._account_id, txn, origin=origin, delta_id=delta_id)
        self._session.add(model)
        self._session.flush()
        return model

    def delete_transaction(self, model: TransactionModel) -> None:
        self._session.delete(model)
        self._session.flush()

    def covered_rows(self) -> set[int]:
        covered: set[int] = set()
        for model in self.load_transaction_models():
            covered.update(model.source_rows or ())
            for line in model.lines:
                covered.update(line.source_rows or ())
        return covered

    def write_running_balances(self, balances: Sequence[tuple[LedgerTransaction, Decimal]]) -> int:
        """Store each transaction's running balance and snapshot discrepancy."""
        models = {m.id: m for m in self.load_transaction_models()}
        written = 0
        for txn, running in balances:
            model = models.get(txn.id)
            if model is None:
                continue
            model.running_balance = running
            model.discrepancy = (
                model.balance_snapshot - running if model.balance_snapshot is not None else None
            )
            written += 1
        self._session.flush()
        return written

    # ------------------------------------------------------------------
    # Exclusions
    # ------------------------------------------------------------------

    def excluded_rows(self) -> set[int]:
        stmt = select(ExcludedRowModel.row_ordinal).where(
            ExcludedRowModel.account_id == self._account_id,
            ExcludedRowModel.active.is_(True),
        )
        return set(self._session.scalars(stmt))

    def exclude_rows(
        self,
        row_ordinals: Iterable[int],
        reason: str,
        delta_id: str | None,
        excluded_at: datetime,
    ) -> list[int]:
        """Mark rows non-transactional.  Returns the rows newly excluded."""
        existing = {
            m.row_ordinal: m
            for m in self._session.scalars(
                select(ExcludedRowModel).where(ExcludedRowModel.account_id == self._account_id)
            )
        }
        newly: list[int] = []
        for ordinal in sorted(set(row_ordinals)):
            model = existing.get(ordinal)
            if model is not None and model.active:
                continue
            if model is None:
                model = ExcludedRowModel(account_id=self._account_id, row_ordinal=ordinal)
                self._session.add(model)
            model.active = True
            model.reason = reason
            model.delta_id = delta_id
            model.excluded_at = excluded_at
            newly.append(ordinal)
        self._session.flush()
        return newly

    def restore_rows(self, row_ordinals: Iterable[int]) -> int:
        wanted = set(row_ordinals)
        if not wanted:
            return 0
        stmt = select(ExcludedRowModel).where(
            ExcludedRowModel.account_id == self._account_id,
            ExcludedRowModel.row_ordinal.in_(wanted),
            ExcludedRowModel.active.is_(True),
        )
        restored = 0
        for model in self._session.scalars(stmt):
            model.active = False
            restored += 1
        self._session.flush()
        return restored
