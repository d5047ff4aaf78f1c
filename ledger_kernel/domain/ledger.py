"""
Ledger -- double-entry transaction value objects and their validation.

Responsibility:
    Defines the immutable ``LedgerTransaction`` / ``JournalLine`` pair the
    builder produces and the repository persists, and the single validation
    routine every transaction passes before it is accepted.

Architecture position:
    Kernel > Domain -- pure, zero I/O apart from the noise-absorption log.

Invariants enforced:
    - Every line carries exactly one positive amount on one side.
    - A transaction has at least two lines.
    - |debits - credits| == 0, or < NOISE_EPSILON (absorbed and logged).
      Anything larger is rejected.  No synthetic rounding leg is ever added.

Failure modes:
    - UnbalancedTransactionError when the imbalance reaches NOISE_EPSILON.
    - InsufficientLegsError when fewer than two lines are supplied.
"""

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID, NAMESPACE_URL, uuid5

from ledger_kernel.domain.values import NOISE_EPSILON, ZERO
from ledger_kernel.exceptions import (
    InsufficientLegsError,
    UnbalancedTransactionError,
)
from ledger_kernel.logging_config import get_logger

logger = get_logger("domain.ledger")

CASH_ACCOUNT = "USD"

_TRANSACTION_NAMESPACE = uuid5(NAMESPACE_URL, "reconciling-ledger/transaction")


class AccountClass(str, Enum):
    """Account classification of a journal line."""

    ASSET = "asset"
    CASH = "cash"
    LIABILITY = "liability"
    EQUITY = "equity"
    INCOME = "income"
    EXPENSE = "expense"

    @property
    def is_debit_normal(self) -> bool:
        return self in (AccountClass.ASSET, AccountClass.CASH, AccountClass.EXPENSE)


class Side(str, Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionType(str, Enum):
    """Classified economic type of a transaction."""

    BUY = "buy"
    SELL = "sell"
    DIVIDEND = "dividend"
    INTEREST = "interest"
    FEE = "fee"
    TRANSFER = "transfer"
    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"
    OTHER = "other"

    @classmethod
    def parse(cls, value: str | None) -> "TransactionType":
        """Lenient parse used for oracle payloads; unknown values become OTHER."""
        if not value:
            return cls.OTHER
        normalized = value.strip().lower()
        if normalized == "commission":
            return cls.FEE
        try:
            return cls(normalized)
        except ValueError:
            return cls.OTHER


@dataclass(frozen=True, slots=True)
class JournalLine:
    """
    One leg of a transaction.

    Contract:
        ``amount`` is strictly positive; ``side`` says which column it sits in.
    """

    account_class: AccountClass
    account_name: str
    side: Side
    amount: Decimal
    quantity: Decimal | None = None
    quantity_unit: str | None = None
    asset_symbol: str | None = None
    source_rows: tuple[int, ...] = ()

    def __post_init__(self) -> None:
        if self.amount <= ZERO:
            raise ValueError(
                f"Journal line amount must be positive, got {self.amount} "
                f"for {self.account_name}"
            )

    @property
    def debit(self) -> Decimal:
        return self.amount if self.side == Side.DEBIT else ZERO

    @property
    def credit(self) -> Decimal:
        return self.amount if self.side == Side.CREDIT else ZERO

    @property
    def net_effect(self) -> Decimal:
        """Signed change to the account in its normal-balance direction."""
        if self.account_class.is_debit_normal:
            return self.debit - self.credit
        return self.credit - self.debit

    @classmethod
    def debit_of(cls, account_class: AccountClass, account_name: str, amount: Decimal, **kw) -> "JournalLine":
        return cls(account_class, account_name, Side.DEBIT, amount, **kw)

    @classmethod
    def credit_of(cls, account_class: AccountClass, account_name: str, amount: Decimal, **kw) -> "JournalLine":
        return cls(account_class, account_name, Side.CREDIT, amount, **kw)


@dataclass(frozen=True, slots=True)
class LedgerTransaction:
    """
    An economic event with its owned journal lines.

    Guarantees:
        - Only constructed through ``validate_lines`` by the builder and
          the delta applier, so it is always balanced on arrival.
    """

    id: UUID
    date: date
    description: str
    transaction_type: TransactionType
    lines: tuple[JournalLine, ...]
    source_rows: tuple[int, ...]
    settlement_date: date | None = None
    balance_snapshot: Decimal | None = None
    primary_amount: Decimal | None = field(default=None, compare=False)

    @property
    def total_debits(self) -> Decimal:
        return sum((line.debit for line in self.lines), ZERO)

    @property
    def total_credits(self) -> Decimal:
        return sum((line.credit for line in self.lines), ZERO)

    @property
    def imbalance(self) -> Decimal:
        return self.total_debits - self.total_credits

    @property
    def min_ordinal(self) -> int | None:
        return min(self.source_rows) if self.source_rows else None


def transaction_id_for(
    account_id: str, row_ordinals: tuple[int, ...], salt: str = ""
) -> UUID:
    """Deterministic id from the account and contributing rows."""
    key = f"{account_id}|{','.join(str(o) for o in sorted(row_ordinals))}|{salt}"
    return uuid5(_TRANSACTION_NAMESPACE, key)


def validate_lines(
    lines: tuple[JournalLine, ...] | list[JournalLine],
    row_ordinals: tuple[int, ...] = (),
    transaction_date: date | None = None,
) -> Decimal:
    """
    Check the balance and leg-count invariants.

    Returns the absorbed imbalance (zero for an exactly balanced set).

    Raises:
        InsufficientLegsError: fewer than two lines.
        UnbalancedTransactionError: |debits - credits| >= NOISE_EPSILON.
    """
    if len(lines) < 2:
        raise InsufficientLegsError(len(lines), tuple(row_ordinals))

    debits = sum((line.debit for line in lines), ZERO)
    credits = sum((line.credit for line in lines), ZERO)
    diff = debits - credits

    if diff == ZERO:
        return ZERO

    if abs(diff) < NOISE_EPSILON:
        logger.warning(
            "imbalance_noise_absorbed",
            extra={
                "imbalance": str(diff),
                "total_debits": str(debits),
                "total_credits": str(credits),
                "row_ordinals": list(row_ordinals),
                "transaction_date": transaction_date.isoformat() if transaction_date else None,
            },
        )
        return diff

    logger.warning(
        "transaction_unbalanced",
        extra={
            "imbalance": str(diff),
            "total_debits": str(debits),
            "total_credits": str(credits),
            "row_ordinals": list(row_ordinals),
        },
    )
    raise UnbalancedTransactionError(
        total_debits=debits,
        total_credits=credits,
        row_ordinals=tuple(row_ordinals),
        transaction_date=transaction_date,
    )
