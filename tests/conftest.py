"""
Pytest fixtures for the ledger reconciliation test suite.

Provides:
- An in-memory SQLite database per test (StaticPool, SAVEPOINT-capable)
- Structured log capture
- A fresh AssetRegistry and deterministic clock per test
"""

import json
import logging
from io import StringIO

import pytest

from ledger_kernel.db.engine import (
    create_tables,
    get_session,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.domain.asset_registry import AssetRegistry
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from tests.factories import scenario_rows as _scenario_rows


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """JSON logging at DEBUG into a throwaway stream for the whole session."""
    reset_logging()
    configure_logging(level=logging.DEBUG, stream=StringIO())
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """No account, run or delta id leaks from one test into the next."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """Call the yielded function to get every ledger_kernel record so far, parsed."""
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def engine():
    eng = init_engine_from_url("sqlite:///:memory:")
    create_tables(eng)
    yield eng
    reset_engine()


@pytest.fixture
def session(engine):
    sess = get_session()
    yield sess
    sess.rollback()
    sess.close()


# =============================================================================
# Domain fixtures
# =============================================================================


@pytest.fixture
def registry():
    return AssetRegistry()


@pytest.fixture
def clock():
    return DeterministicClock()


@pytest.fixture
def scenario_rows():
    return _scenario_rows()
