"""Database layer - engine, base classes, column types."""

from ledger_kernel.db.base import UUID, Base, DecimalString, UUIDString
from ledger_kernel.db.engine import (
    build_engine,
    create_tables,
    get_engine,
    get_session,
    init_engine_from_url,
    session_scope,
)

__all__ = [
    "build_engine",
    "create_tables",
    "get_engine",
    "get_session",
    "init_engine_from_url",
    "session_scope",
    "Base",
    "DecimalString",
    "UUIDString",
    "UUID",
]
