"""
ledger_services.oracle -- Boundary to the external investigation oracle.

Responsibility:
    Define what an oracle is (anything with ``investigate(request)``),
    turn whatever it returns into ``InvestigationFindings``, and bound each
    call with a timeout.

Architecture position:
    Services -- the only place oracle output enters the core.

Invariants enforced:
    - A malformed or empty response is "no fix found", never an abort.
    - A single bad fix (confidence outside [0, 1], unparseable delta) is
      dropped on its own; the rest of the response is kept.
    - Deltas written with a bare ``transaction`` object are creates of that
      transaction.

Failure modes:
    - OracleTimeoutError when the call outlives its timeout.
    - Any exception raised by the oracle itself propagates to the caller,
      which records the investigation as unresolved.
"""

from __future__ import annotations

import json
import re
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from typing import Any, Mapping, Protocol, runtime_checkable

from ledger_engines.correction.delta import TransactionDelta
from ledger_engines.investigation.types import (
    FixImpact,
    InvestigationFindings,
    OracleRequest,
    ProposedFix,
)
from ledger_kernel.domain.values import parse_decimal
from ledger_kernel.exceptions import InvalidDeltaError, OracleTimeoutError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.oracle")

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


@runtime_checkable
class InvestigationOracle(Protocol):
    """Researches one discrepancy.  May return findings, a dict, or JSON text."""

    def investigate(self, request: OracleRequest) -> InvestigationFindings | Mapping[str, Any] | str:
        ...


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


def extract_json(text: str) -> Any:
    """Decode the JSON object in ``text``, ignoring fences and surrounding prose."""
    fenced = _FENCE.search(text)
    if fenced:
        text = fenced.group(1)
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end < start:
        raise ValueError("no JSON object in response")
    return json.loads(text[start:end + 1])


def _str_list(value: Any) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(v) for v in value if v is not None)


def _int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _normalize_delta(data: Any) -> Any:
    if isinstance(data, dict) and "transaction" in data and "newTransactionData" not in data:
        data = dict(data)
        data["newTransactionData"] = data.pop("transaction")
        data.setdefault("action", "create")
    return data


def parse_impact(data: Any) -> FixImpact:
    if not isinstance(data, dict):
        return FixImpact()
    return FixImpact(
        balance_change=parse_decimal(data.get("balanceChange")),
        transactions_created=_int(data.get("transactionsCreated")),
        transactions_modified=_int(data.get("transactionsModified")),
        transactions_deleted=_int(data.get("transactionsDeleted")),
        checkpoints_resolved=_int(data.get("checkpointsResolved")),
        risk_note=str(data.get("newDiscrepanciesRisk") or data.get("riskNote") or ""),
    )


def parse_fix(data: Any) -> ProposedFix:
    """
    Raises:
        InvalidDeltaError: a delta is structurally invalid.
        ValueError / TypeError: confidence missing or out of range.
    """
    if not isinstance(data, dict):
        raise ValueError("fix is not an object")
    raw_deltas = data.get("deltas")
    if not isinstance(raw_deltas, list) or not raw_deltas:
        raise ValueError("fix has no deltas")
    return ProposedFix(
        description=str(data.get("description") or ""),
        confidence=float(data.get("confidence")),
        deltas=tuple(TransactionDelta.from_dict(_normalize_delta(d)) for d in raw_deltas),
        reasoning=str(data.get("reasoning") or ""),
        impact=parse_impact(data.get("impact")),
        supporting_evidence=_str_list(data.get("supportingEvidence")),
        assumptions=_str_list(data.get("assumptions")),
    )


def parse_oracle_response(response: Any) -> InvestigationFindings:
    """Findings from any oracle response shape.  Never raises."""
    if isinstance(response, InvestigationFindings):
        return response
    if response is None:
        return InvestigationFindings.empty("empty oracle response")

    data = response
    if isinstance(response, (str, bytes)):
        text = response.decode("utf-8", "replace") if isinstance(response, bytes) else response
        if not text.strip():
            return InvestigationFindings.empty("empty oracle response")
        try:
            data = extract_json(text)
        except ValueError as exc:
            logger.warning("oracle_response_malformed", extra={"error": str(exc)})
            return InvestigationFindings.empty(f"malformed oracle response: {exc}")

    if not isinstance(data, Mapping):
        logger.warning("oracle_response_malformed", extra={"error": "not an object"})
        return InvestigationFindings.empty("malformed oracle response: not an object")

    raw_fixes = data.get("proposedFixes", data.get("fixes")) or []
    if not isinstance(raw_fixes, list):
        raw_fixes = []
    fixes: list[ProposedFix] = []
    for index, raw in enumerate(raw_fixes):
        try:
            fixes.append(parse_fix(raw))
        except (InvalidDeltaError, ValueError, TypeError) as exc:
            logger.warning(
                "oracle_fix_dropped",
                extra={"fix_index": index, "error": str(exc)},
            )

    return InvestigationFindings(
        hypothesis=str(data.get("hypothesis") or ""),
        evidence_analysis=str(data.get("evidenceAnalysis") or data.get("evidence") or ""),
        fixes=tuple(fixes),
        uncertainties=_str_list(data.get("uncertainties")),
        needs_more_data=bool(data.get("needsMoreData", False)),
    )


# ---------------------------------------------------------------------------
# Timeout
# ---------------------------------------------------------------------------


class TimeoutOracle:
    """
    Wraps an oracle so each call is bounded by ``timeout_seconds``.

    The underlying call keeps running on its worker thread after a timeout;
    its result is discarded.
    """

    def __init__(self, oracle: InvestigationOracle, timeout_seconds: float):
        self._oracle = oracle
        self._timeout = timeout_seconds
        self._pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="ledger-oracle")

    def investigate(self, request: OracleRequest) -> InvestigationFindings:
        future = self._pool.submit(self._oracle.investigate, request)
        try:
            response = future.result(timeout=self._timeout)
        except FutureTimeoutError as exc:
            future.cancel()
            raise OracleTimeoutError(
                request.discrepancy.discrepancy_id, self._timeout
            ) from exc
        return parse_oracle_response(response)

    def close(self) -> None:
        self._pool.shutdown(wait=False, cancel_futures=True)
