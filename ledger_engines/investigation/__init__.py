"""Investigation: oracle request assembly and confidence gating."""

from ledger_engines.investigation.context import build_context_window, build_request
from ledger_engines.investigation.gating import (
    GateDecision,
    GatedFixes,
    GatingPolicy,
    gate_fixes,
    rank_fixes,
)
from ledger_engines.investigation.types import (
    ContextWindow,
    FixImpact,
    InvestigationFindings,
    OracleRequest,
    ProposedFix,
    Thoroughness,
)

__all__ = [
    "ContextWindow",
    "FixImpact",
    "GateDecision",
    "GatedFixes",
    "GatingPolicy",
    "InvestigationFindings",
    "OracleRequest",
    "ProposedFix",
    "Thoroughness",
    "build_context_window",
    "build_request",
    "gate_fixes",
    "rank_fixes",
]
