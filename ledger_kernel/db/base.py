"""
Module: ledger_kernel.db.base
Responsibility: Declarative base for all SQLAlchemy ORM models.  Provides the
    UUID primary key convention, a lossless Decimal column type, and the
    type annotation map shared by every model.
Architecture position: Kernel > DB.  Lowest-level import target within the
    kernel.  MUST NOT import from models/, domain/, or outer packages.

Invariants enforced:
    - UUID primary keys stored as String(36) on every backend.
    - Money is stored as a canonical decimal string.  SQLite has no native
      decimal type and would round-trip Numeric through float; storing the
      string keeps amounts bit-exact on every dialect.

Failure modes:
    - decimal.InvalidOperation if a stored money string is corrupt.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import Date, DateTime, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator


class UUIDString(TypeDecorator):
    """UUID stored as String(36) for cross-database portability."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is not None:
            return str(value)
        return None

    def process_result_value(self, value, dialect):
        if value is not None:
            return PyUUID(value)
        return None


class DecimalString(TypeDecorator):
    """
    Decimal stored as its canonical string form.

    Contract:
        Round-trips any finite Decimal exactly.  Comparisons and sums are
        done in Python, never in SQL, so no arithmetic column type is needed.
    """

    impl = String(64)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        return str(value)

    def process_result_value(self, value, dialect):
        if value is not None:
            return Decimal(value)
        return None


class Base(DeclarativeBase):
    """
    Declarative base for all ledger models.

    Guarantees:
        - id is a uuid4 UUID stored as String(36) unless the model assigns
          a deterministic id before flush.
        - Decimal maps to DecimalString.
        - datetime maps to DateTime(timezone=True).
    """

    type_annotation_map: ClassVar[dict] = {
        Decimal: DecimalString(),
        datetime: DateTime(timezone=True),
        date: Date(),
        PyUUID: UUIDString(),
        int: Integer,
    }

    id: Mapped[PyUUID] = mapped_column(
        UUIDString(),
        primary_key=True,
        default=uuid4,
    )


UUID = PyUUID
