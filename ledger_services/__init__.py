"""
ledger_services -- Package init and public API.

Responsibility:
    Stateful orchestration over the pure engines (ledger_engines/): ledger
    persistence, parallel transaction construction, delta application with
    undo, the oracle boundary and the reconciliation loop.  This is the
    only layer that holds database sessions or reads wall-clock time.

Architecture position:
    Services -- stateful orchestration over engines + kernel.

        ledger_services/ -> ledger_engines/  (allowed)
        ledger_services/ -> ledger_kernel/   (allowed)
        ledger_engines/  -> ledger_services/ (FORBIDDEN)
        ledger_kernel/   -> ledger_services/ (FORBIDDEN)

Invariants enforced:
    - Services flush; ReconciliationService owns commit boundaries.
"""

from ledger_kernel.logging_config import get_logger

logger = get_logger("services")

from ledger_services.account_lock import AccountLockRegistry, default_lock_registry
from ledger_services.construction_service import (
    ConstructionReport,
    ConstructionService,
    SkippedUnit,
)
from ledger_services.delta_applier import DeltaApplier, DeltaOutcome
from ledger_services.ledger_repository import LedgerRepository
from ledger_services.oracle import (
    InvestigationOracle,
    TimeoutOracle,
    extract_json,
    parse_fix,
    parse_oracle_response,
)
from ledger_services.reconciliation_service import (
    CancellationToken,
    ReconciliationService,
    ReconciliationSummary,
)

__all__ = [
    "AccountLockRegistry",
    "CancellationToken",
    "ConstructionReport",
    "ConstructionService",
    "DeltaApplier",
    "DeltaOutcome",
    "InvestigationOracle",
    "LedgerRepository",
    "ReconciliationService",
    "ReconciliationSummary",
    "SkippedUnit",
    "TimeoutOracle",
    "default_lock_registry",
    "extract_json",
    "parse_fix",
    "parse_oracle_response",
]
