"""Tests for oracle response parsing and the timeout wrapper."""

import json
import threading
from decimal import Decimal

import pytest

from ledger_engines.correction.delta import DeltaAction
from ledger_engines.investigation import InvestigationFindings, OracleRequest
from ledger_engines.investigation.types import ContextWindow
from ledger_engines.reconciliation import Discrepancy, DiscrepancyType
from ledger_kernel.domain.values import Severity
from ledger_kernel.exceptions import OracleTimeoutError
from ledger_services import TimeoutOracle, extract_json, parse_oracle_response
from tests.factories import SCENARIO_DATE, TEST_ACCOUNT_ID, StubOracle, deposit_payload, opening_deposit_fix


def _request():
    discrepancy = Discrepancy(
        discrepancy_type=DiscrepancyType.MISSING_TRANSACTION,
        amount=Decimal("48195.04"),
        severity=Severity.CRITICAL,
        start_date=SCENARIO_DATE,
        end_date=SCENARIO_DATE,
        summary="funding missing",
        affected_rows=(1,),
    )
    return OracleRequest(
        account_id=TEST_ACCOUNT_ID,
        discrepancy=discrepancy,
        context=ContextWindow(start_date=SCENARIO_DATE, end_date=SCENARIO_DATE),
    )


class TestExtractJson:
    def test_fenced_block_with_prose(self):
        text = 'Here is my analysis:\n```json\n{"hypothesis": "h"}\n```\nThanks.'
        assert extract_json(text) == {"hypothesis": "h"}

    def test_bare_object_in_prose(self):
        assert extract_json('Result: {"a": 1} done') == {"a": 1}

    def test_no_object(self):
        with pytest.raises(ValueError):
            extract_json("no json here")


class TestParseOracleResponse:
    def test_dict_response(self):
        findings = parse_oracle_response(
            {
                "hypothesis": "Funding predates the export",
                "evidenceAnalysis": "Row 1 balance exceeds computed",
                "proposedFixes": [opening_deposit_fix(0.97)],
                "uncertainties": ["exact funding date"],
                "needsMoreData": False,
            }
        )

        assert findings.hypothesis == "Funding predates the export"
        (fix,) = findings.fixes
        assert fix.confidence == 0.97
        assert fix.deltas[0].action == DeltaAction.CREATE
        assert fix.impact.balance_change == Decimal("48195.04")
        assert fix.impact.checkpoints_resolved == 2
        assert findings.uncertainties == ("exact funding date",)

    def test_json_string_in_fence(self):
        body = json.dumps({"hypothesis": "h", "fixes": [opening_deposit_fix(0.5)]})
        findings = parse_oracle_response(f"```\n{body}\n```")

        assert findings.fixes[0].confidence == 0.5

    def test_findings_pass_through(self):
        findings = InvestigationFindings(hypothesis="ready")
        assert parse_oracle_response(findings) is findings

    @pytest.mark.parametrize("response", [None, "", "   ", "I could not find anything", 42, ["a"]])
    def test_malformed_is_no_fix(self, response):
        findings = parse_oracle_response(response)
        assert findings.fixes == ()

    def test_malformed_is_logged(self, captured_logs):
        parse_oracle_response("not json at all")
        assert any(r["message"] == "oracle_response_malformed" for r in captured_logs())

    def test_bad_fix_dropped_alone(self, captured_logs):
        bad_confidence = opening_deposit_fix(1.5)
        no_deltas = dict(opening_deposit_fix(0.9), deltas=[])
        findings = parse_oracle_response(
            {"proposedFixes": [bad_confidence, opening_deposit_fix(0.8), no_deltas]}
        )

        assert [f.confidence for f in findings.fixes] == [0.8]
        dropped = [r for r in captured_logs() if r["message"] == "oracle_fix_dropped"]
        assert [r["fix_index"] for r in dropped] == [0, 2]

    def test_transaction_shorthand_is_create(self):
        fix = {
            "description": "add deposit",
            "confidence": 0.9,
            "deltas": [{"reason": "missing", "transaction": deposit_payload("5")}],
        }
        (parsed,) = parse_oracle_response({"fixes": [fix]}).fixes

        delta = parsed.deltas[0]
        assert delta.action == DeltaAction.CREATE
        assert delta.new_transaction.entries[0].amount == Decimal("5")


class TestTimeoutOracle:
    def test_result_parsed(self):
        stub = StubOracle(response={"proposedFixes": [opening_deposit_fix(0.97)]})
        oracle = TimeoutOracle(stub, timeout_seconds=5)
        try:
            findings = oracle.investigate(_request())
        finally:
            oracle.close()

        assert findings.fixes[0].confidence == 0.97
        assert len(stub.requests) == 1

    def test_timeout(self):
        release = threading.Event()

        def slow(request):
            release.wait(5)
            return {}

        oracle = TimeoutOracle(StubOracle(responder=slow), timeout_seconds=0.05)
        try:
            with pytest.raises(OracleTimeoutError) as exc_info:
                oracle.investigate(_request())
        finally:
            release.set()
            oracle.close()

        assert exc_info.value.code == "ORACLE_TIMEOUT"
        assert exc_info.value.discrepancy_id == _request().discrepancy.discrepancy_id

    def test_oracle_exception_propagates(self):
        def broken(request):
            raise RuntimeError("upstream down")

        oracle = TimeoutOracle(StubOracle(responder=broken), timeout_seconds=5)
        try:
            with pytest.raises(RuntimeError):
                oracle.investigate(_request())
        finally:
            oracle.close()
