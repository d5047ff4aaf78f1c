"""
Module: ledger_kernel.db.engine
Responsibility: Build the SQLAlchemy engine for a database URL, hold the
    process-wide session factory, and provide a commit-or-rollback scope.
Architecture position: Kernel > DB.  May import from db/base.py and, inside
    create_tables(), from models/ so Base.metadata sees every table.

Invariants enforced:
    - Every applied delta runs inside a SAVEPOINT.  For SQLite the pysqlite
      driver's own transaction handling is disabled and BEGIN is emitted by
      SQLAlchemy, which is what makes SAVEPOINT/ROLLBACK TO work.
    - In-memory SQLite shares one connection (StaticPool) so every session
      in the process sees the same database.
    - Sessions do not expire on commit; the reconciliation loop keeps using
      its loaded rows after each per-fix commit.

Failure modes:
    - RuntimeError from get_engine()/get_session() before
      init_engine_from_url().
"""

from collections.abc import Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ledger_kernel.logging_config import get_logger

logger = get_logger("db.engine")

_engine: Engine | None = None
_session_factory: sessionmaker[Session] | None = None

_IN_MEMORY_URLS = ("sqlite://", "sqlite+pysqlite://")


def _is_in_memory(database_url: str) -> bool:
    return ":memory:" in database_url or database_url in _IN_MEMORY_URLS


def _enable_sqlite_savepoints(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN")


def build_engine(database_url: str, echo: bool = False) -> Engine:
    """Engine for ``database_url``; leaves module state alone."""
    if not database_url.startswith("sqlite"):
        return create_engine(database_url, echo=echo, pool_pre_ping=True)

    options: dict = {"connect_args": {"check_same_thread": False}}
    if _is_in_memory(database_url):
        options["poolclass"] = StaticPool
    engine = create_engine(database_url, echo=echo, **options)
    _enable_sqlite_savepoints(engine)
    return engine


def init_engine_from_url(database_url: str, echo: bool = False) -> Engine:
    """Make ``database_url`` the process database.  A second call replaces the first."""
    global _engine, _session_factory
    _engine = build_engine(database_url, echo=echo)
    _session_factory = sessionmaker(bind=_engine, expire_on_commit=False)
    logger.info(
        "engine_initialized",
        extra={"dialect": _engine.dialect.name, "in_memory": _is_in_memory(database_url)},
    )
    return _engine


def _not_initialized() -> RuntimeError:
    return RuntimeError("No database configured; call init_engine_from_url() first")


def get_engine() -> Engine:
    if _engine is None:
        raise _not_initialized()
    return _engine


def get_session() -> Session:
    if _session_factory is None:
        raise _not_initialized()
    return _session_factory()


@contextmanager
def session_scope() -> Iterator[Session]:
    """A session that commits when the block exits cleanly and rolls back otherwise."""
    session = get_session()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        logger.warning("session_rolled_back", exc_info=True)
        raise
    finally:
        session.close()


def create_tables(engine: Engine | None = None) -> None:
    from ledger_kernel.db.base import Base
    import ledger_kernel.models  # noqa: F401  registers all tables

    Base.metadata.create_all(engine or get_engine())


def reset_engine() -> None:
    """Dispose the process engine; tests call this between databases."""
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = None
    _session_factory = None
