"""
Institution detection from export headers and sample actions.

Each known institution scores the normalized headers (and, where the
institution has distinctive action text, a few sample rows).  The best
confidence wins; ties go to the higher raw score, then to declaration
order.  Nothing matching yields UNKNOWN with confidence NONE.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Sequence

from ledger_kernel.logging_config import get_logger

logger = get_logger("ingestion.institution")


class Institution(str, Enum):
    FIDELITY = "fidelity"
    COINBASE = "coinbase"
    SCHWAB = "schwab"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        return {
            "fidelity": "Fidelity Investments",
            "coinbase": "Coinbase",
            "schwab": "Charles Schwab",
            "unknown": "Unknown",
        }[self.value]


class DetectionConfidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1, "none": 0}[self.value]


@dataclass(frozen=True)
class DetectionResult:
    institution: Institution
    confidence: DetectionConfidence
    indicators: tuple[str, ...] = ()
    score: int = 0

    @property
    def is_confident(self) -> bool:
        return self.confidence in (DetectionConfidence.HIGH, DetectionConfidence.MEDIUM)


def _normalize(headers: Sequence[str]) -> list[str]:
    return [h.strip().lower() for h in headers]


def _column_values(
    headers: Sequence[str], sample_rows: Sequence[Mapping[str, Any]], wanted: str
) -> list[str]:
    for header in headers:
        if header.strip().lower() == wanted:
            return [str(r.get(header) or "") for r in sample_rows]
    return []


def _confidence(score: int, high: int | None, medium: int) -> DetectionConfidence:
    if high is not None and score >= high:
        return DetectionConfidence.HIGH
    if score >= medium:
        return DetectionConfidence.MEDIUM
    if score > 0:
        return DetectionConfidence.LOW
    return DetectionConfidence.NONE


def detect_fidelity(headers, sample_rows) -> DetectionResult:
    normalized = _normalize(headers)
    indicators: list[str] = []
    score = 0
    for column, weight in (("run date", 3), ("action", 2), ("symbol", 1), ("settlement price", 3)):
        if column in normalized:
            indicators.append(f"Has '{column}' column")
            score += weight
    actions = _column_values(headers, sample_rows, "action")
    if any(
        marker in action
        for action in actions
        for marker in ("YOU BOUGHT", "YOU SOLD", "DIVIDEND")
    ):
        indicators.append("Found Fidelity action patterns")
        score += 3
    return DetectionResult(
        Institution.FIDELITY, _confidence(score, 6, 3), tuple(indicators), score
    )


def detect_coinbase(headers, sample_rows) -> DetectionResult:
    normalized = _normalize(headers)
    indicators: list[str] = []
    score = 0
    if "timestamp" in normalized:
        indicators.append("Has 'timestamp' column")
        score += 1
    if "transaction type" in normalized:
        indicators.append("Has 'transaction type' column")
        score += 2
    if "asset" in normalized or "currency" in normalized:
        indicators.append("Has 'asset' or 'currency' column")
        score += 1
    if "quantity transacted" in normalized:
        indicators.append("Has 'quantity transacted' column")
        score += 3
    types = _column_values(headers, sample_rows, "transaction type")
    if any(t in ("Buy", "Sell", "Send", "Receive", "Rewards") for t in types):
        indicators.append("Found Coinbase transaction types")
        score += 3
    return DetectionResult(
        Institution.COINBASE, _confidence(score, 6, 3), tuple(indicators), score
    )


def detect_schwab(headers, sample_rows) -> DetectionResult:
    normalized = _normalize(headers)
    indicators: list[str] = []
    score = 0
    if "date" in normalized and "action" in normalized:
        indicators.append("Has 'date' and 'action' columns")
        score += 1
    if "description" in normalized and "fees & comm" in normalized:
        indicators.append("Has 'fees & comm' column")
        score += 2
    return DetectionResult(
        Institution.SCHWAB, _confidence(score, None, 3), tuple(indicators), score
    )


DETECTORS: tuple[Callable[..., DetectionResult], ...] = (
    detect_fidelity,
    detect_coinbase,
    detect_schwab,
)


def detect_institution(
    headers: Sequence[str],
    sample_rows: Sequence[Mapping[str, Any]] = (),
) -> DetectionResult:
    """Most confident match across known institutions."""
    results = [detector(headers, sample_rows) for detector in DETECTORS]
    best = max(
        enumerate(results),
        key=lambda pair: (pair[1].confidence.rank, pair[1].score, -pair[0]),
    )[1]
    if best.confidence == DetectionConfidence.NONE:
        best = DetectionResult(Institution.UNKNOWN, DetectionConfidence.NONE)

    logger.info(
        "institution_detected",
        extra={
            "institution": best.institution.value,
            "confidence": best.confidence.value,
            "indicators": list(best.indicators),
        },
    )
    return best
