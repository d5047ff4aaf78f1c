"""
Module: ledger_kernel.models.ledger
Responsibility: ORM persistence for source rows, assets, transactions, their
    journal entries and excluded rows -- the persisted ledger that
    reconciliation recomputes from.
Architecture position: Kernel > Models.  May import from db/ and domain/.

Invariants enforced:
    - One row per (account_id, global_ordinal) in ledger_source_rows and
      ledger_excluded_rows.
    - Journal entries are exclusively owned by their transaction
      (cascade delete-orphan).
    - Balance is validated before a transaction is ever added to a session;
      ``is_balanced`` is here for read-side assertions.

Failure modes:
    - IntegrityError on a duplicate source row or excluded row.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import Base, UUIDString
from ledger_kernel.domain.assets import Asset, AssetClass
from ledger_kernel.domain.ledger import (
    AccountClass,
    JournalLine,
    LedgerTransaction,
    Side,
    TransactionType,
)
from ledger_kernel.domain.rows import MappedRow, SourceRow
from ledger_kernel.domain.values import BALANCE_TOLERANCE, ZERO


class SourceRowModel(Base):
    """One ingested export row, standardized fields plus raw cells."""

    __tablename__ = "ledger_source_rows"

    __table_args__ = (
        UniqueConstraint("account_id", "global_ordinal", name="uq_source_row_ordinal"),
        Index("idx_source_row_account", "account_id"),
    )

    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    batch_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    global_ordinal: Mapped[int] = mapped_column(nullable=False)
    file_ordinal: Mapped[int] = mapped_column(nullable=False)

    row_date: Mapped[date | None] = mapped_column(nullable=True)
    action: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    symbol: Mapped[str] = mapped_column(String(50), nullable=False, default="")
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    price: Mapped[Decimal | None] = mapped_column(nullable=True)
    settlement_date: Mapped[date | None] = mapped_column(nullable=True)
    balance: Mapped[Decimal | None] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    raw: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)

    @classmethod
    def from_domain(cls, account_id: str, row: SourceRow) -> "SourceRowModel":
        m = row.mapped
        return cls(
            account_id=account_id,
            batch_id=row.batch_id,
            global_ordinal=row.global_ordinal,
            file_ordinal=row.file_ordinal,
            row_date=m.date,
            action=m.action,
            symbol=m.symbol,
            quantity=m.quantity,
            amount=m.amount,
            price=m.price,
            settlement_date=m.settlement_date,
            balance=m.balance,
            description=m.description,
            raw=dict(row.raw),
        )

    def to_domain(self) -> SourceRow:
        return SourceRow(
            global_ordinal=self.global_ordinal,
            file_ordinal=self.file_ordinal,
            mapped=MappedRow(
                date=self.row_date,
                action=self.action,
                symbol=self.symbol,
                quantity=self.quantity,
                amount=self.amount,
                price=self.price,
                settlement_date=self.settlement_date,
                balance=self.balance,
                description=self.description,
            ),
            raw=dict(self.raw or {}),
            batch_id=self.batch_id,
        )


class AssetModel(Base):
    """Persisted canonical asset.  id is derived from the symbol."""

    __tablename__ = "ledger_assets"

    __table_args__ = (UniqueConstraint("symbol", name="uq_asset_symbol"),)

    symbol: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    asset_class: Mapped[str] = mapped_column(String(20), nullable=False)

    @classmethod
    def from_domain(cls, asset: Asset) -> "AssetModel":
        return cls(
            id=asset.id,
            symbol=asset.symbol,
            name=asset.name,
            asset_class=asset.asset_class.value,
        )

    def to_domain(self) -> Asset:
        return Asset(
            symbol=self.symbol,
            name=self.name,
            asset_class=AssetClass(self.asset_class),
            id=self.id,
        )


class TransactionModel(Base):
    """
    Transaction header.

    ``running_balance`` and ``discrepancy`` are derived columns written by
    the checkpoint pass; they are never read back as inputs.
    """

    __tablename__ = "ledger_transactions"

    __table_args__ = (
        Index("idx_txn_account_date", "account_id", "txn_date"),
        Index("idx_txn_account_ordinal", "account_id", "min_ordinal"),
    )

    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    txn_date: Mapped[date] = mapped_column(nullable=False)
    settlement_date: Mapped[date | None] = mapped_column(nullable=True)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    transaction_type: Mapped[str] = mapped_column(String(20), nullable=False)
    source_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    min_ordinal: Mapped[int | None] = mapped_column(nullable=True)
    primary_amount: Mapped[Decimal | None] = mapped_column(nullable=True)

    balance_snapshot: Mapped[Decimal | None] = mapped_column(nullable=True)
    running_balance: Mapped[Decimal | None] = mapped_column(nullable=True)
    discrepancy: Mapped[Decimal | None] = mapped_column(nullable=True)

    # "import" for built rows, "delta" for oracle-proposed creations.
    origin: Mapped[str] = mapped_column(String(20), nullable=False, default="import")
    created_by_delta_id: Mapped[str | None] = mapped_column(String(64), nullable=True)

    lines: Mapped[list["JournalEntryModel"]] = relationship(
        back_populates="transaction",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalEntryModel.position",
    )

    @property
    def total_debits(self) -> Decimal:
        return sum((ln.amount for ln in self.lines if ln.side == Side.DEBIT.value), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((ln.amount for ln in self.lines if ln.side == Side.CREDIT.value), ZERO)

    @property
    def is_balanced(self) -> bool:
        return abs(self.total_debits - self.total_credits) < BALANCE_TOLERANCE

    @classmethod
    def from_domain(
        cls,
        account_id: str,
        txn: LedgerTransaction,
        origin: str = "import",
        delta_id: str | None = None,
    ) -> "TransactionModel":
        model = cls(
            id=txn.id,
            account_id=account_id,
            txn_date=txn.date,
            settlement_date=txn.settlement_date,
            description=txn.description,
            transaction_type=txn.transaction_type.value,
            source_rows=list(txn.source_rows),
            min_ordinal=txn.min_ordinal,
            primary_amount=txn.primary_amount,
            balance_snapshot=txn.balance_snapshot,
            origin=origin,
            created_by_delta_id=delta_id,
        )
        model.lines = [
            JournalEntryModel.from_domain(position, line)
            for position, line in enumerate(txn.lines)
        ]
        return model

    def to_domain(self) -> LedgerTransaction:
        return LedgerTransaction(
            id=self.id,
            date=self.txn_date,
            description=self.description,
            transaction_type=TransactionType(self.transaction_type),
            lines=tuple(ln.to_domain() for ln in self.lines),
            source_rows=tuple(self.source_rows or ()),
            settlement_date=self.settlement_date,
            balance_snapshot=self.balance_snapshot,
            primary_amount=self.primary_amount,
        )


class JournalEntryModel(Base):
    """One journal leg, owned by its transaction."""

    __tablename__ = "ledger_journal_entries"

    __table_args__ = (
        Index("idx_entry_transaction", "transaction_id"),
        Index("idx_entry_account_name", "account_name"),
    )

    transaction_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("ledger_transactions.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(nullable=False, default=0)
    account_class: Mapped[str] = mapped_column(String(20), nullable=False)
    account_name: Mapped[str] = mapped_column(String(200), nullable=False)
    side: Mapped[str] = mapped_column(String(10), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    quantity: Mapped[Decimal | None] = mapped_column(nullable=True)
    quantity_unit: Mapped[str | None] = mapped_column(String(20), nullable=True)
    asset_symbol: Mapped[str | None] = mapped_column(String(50), nullable=True)
    source_rows: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    transaction: Mapped["TransactionModel"] = relationship(back_populates="lines")

    @classmethod
    def from_domain(cls, position: int, line: JournalLine) -> "JournalEntryModel":
        return cls(
            position=position,
            account_class=line.account_class.value,
            account_name=line.account_name,
            side=line.side.value,
            amount=line.amount,
            quantity=line.quantity,
            quantity_unit=line.quantity_unit,
            asset_symbol=line.asset_symbol,
            source_rows=list(line.source_rows),
        )

    def to_domain(self) -> JournalLine:
        return JournalLine(
            account_class=AccountClass(self.account_class),
            account_name=self.account_name,
            side=Side(self.side),
            amount=self.amount,
            quantity=self.quantity,
            quantity_unit=self.quantity_unit,
            asset_symbol=self.asset_symbol,
            source_rows=tuple(self.source_rows or ()),
        )


class ExcludedRowModel(Base):
    """A row marked non-transactional.  The row itself is never deleted."""

    __tablename__ = "ledger_excluded_rows"

    __table_args__ = (
        UniqueConstraint("account_id", "row_ordinal", name="uq_excluded_row"),
    )

    account_id: Mapped[str] = mapped_column(String(100), nullable=False)
    row_ordinal: Mapped[int] = mapped_column(nullable=False)
    reason: Mapped[str] = mapped_column(String(500), nullable=False, default="")
    delta_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    excluded_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
