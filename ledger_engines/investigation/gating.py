"""
Confidence gating of proposed fixes.

    confidence >= auto_apply_threshold (0.95)  -> AUTO_APPLY
    approval_threshold (0.70) <= c < 0.95      -> NEEDS_APPROVAL
    c < approval_threshold                     -> RECORD_ONLY (never applied)
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence

from ledger_engines.investigation.types import ProposedFix


class GateDecision(str, Enum):
    AUTO_APPLY = "auto_apply"
    NEEDS_APPROVAL = "needs_approval"
    RECORD_ONLY = "record_only"


@dataclass(frozen=True)
class GatingPolicy:
    auto_apply_threshold: float = 0.95
    approval_threshold: float = 0.70

    def __post_init__(self) -> None:
        if not 0.0 <= self.approval_threshold <= self.auto_apply_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= approval <= auto_apply <= 1, got "
                f"{self.approval_threshold} / {self.auto_apply_threshold}"
            )

    def classify(self, confidence: float) -> GateDecision:
        if confidence >= self.auto_apply_threshold:
            return GateDecision.AUTO_APPLY
        if confidence >= self.approval_threshold:
            return GateDecision.NEEDS_APPROVAL
        return GateDecision.RECORD_ONLY


@dataclass(frozen=True)
class GatedFixes:
    """Fix indices (into the oracle's original list) per decision, best first."""

    auto_apply: tuple[int, ...] = ()
    needs_approval: tuple[int, ...] = ()
    record_only: tuple[int, ...] = ()


def rank_fixes(fixes: Sequence[ProposedFix]) -> tuple[int, ...]:
    """Indices ordered by confidence descending; ties keep oracle order."""
    return tuple(sorted(range(len(fixes)), key=lambda i: -fixes[i].confidence))


def gate_fixes(fixes: Sequence[ProposedFix], policy: GatingPolicy) -> GatedFixes:
    buckets: dict[GateDecision, list[int]] = {d: [] for d in GateDecision}
    for index in rank_fixes(fixes):
        buckets[policy.classify(fixes[index].confidence)].append(index)
    return GatedFixes(
        auto_apply=tuple(buckets[GateDecision.AUTO_APPLY]),
        needs_approval=tuple(buckets[GateDecision.NEEDS_APPROVAL]),
        record_only=tuple(buckets[GateDecision.RECORD_ONLY]),
    )
