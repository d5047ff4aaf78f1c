"""Tests for the engine trace decorator and the test clock."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from ledger_engines.settlement import DualRowSettlementPolicy, group_rows
from ledger_engines.tracer import compute_input_fingerprint, traced_engine
from ledger_kernel.domain.clock import DeterministicClock
from tests.factories import make_row


def _traces(logs):
    return [r for r in logs if r["message"] == "LEDGER_ENGINE_TRACE"]


class TestTracedEngine:
    def test_grouping_emits_trace(self, scenario_rows, captured_logs):
        group_rows(scenario_rows, DualRowSettlementPolicy())

        trace = _traces(captured_logs())[-1]
        assert trace["engine_name"] == "settlement_grouper"
        assert trace["engine_version"] == "1.0"
        assert len(trace["input_fingerprint"]) == 16
        assert trace["duration_ms"] >= 0

    def test_same_rows_same_fingerprint(self, scenario_rows, captured_logs):
        group_rows(scenario_rows, DualRowSettlementPolicy())
        group_rows(list(scenario_rows), DualRowSettlementPolicy())
        group_rows(scenario_rows[:2], DualRowSettlementPolicy())

        first, second, third = [t["input_fingerprint"] for t in _traces(captured_logs())[-3:]]
        assert first == second
        assert first != third

    def test_failure_logged_and_reraised(self, captured_logs):
        @traced_engine("exploding", "0.1")
        def explode():
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            explode()

        failed = [r for r in captured_logs() if r["message"] == "LEDGER_ENGINE_FAILED"]
        assert failed[0]["engine_name"] == "exploding"
        assert failed[0]["error"] == "ValueError"
        assert _traces(captured_logs()) == []


class TestFingerprint:
    def test_key_order_and_decimal_scale_ignored(self):
        a = compute_input_fingerprint(("m",), {"m": {"x": Decimal("1.50"), "y": 2}})
        b = compute_input_fingerprint(("m",), {"m": {"y": 2, "x": Decimal("1.5")}})
        assert a == b

    def test_missing_argument_is_stable(self):
        assert compute_input_fingerprint(("a",), {}) == compute_input_fingerprint(("a",), {"a": None})

    def test_row_contents_matter(self):
        one = compute_input_fingerprint(("rows",), {"rows": [make_row(0, amount="1")]})
        two = compute_input_fingerprint(("rows",), {"rows": [make_row(0, amount="2")]})
        assert one != two


class TestDeterministicClock:
    def test_pinned_until_advanced(self, clock):
        first = clock.now()
        assert clock.now() == first
        clock.advance(30)
        assert clock.now() == first + timedelta(seconds=30)

    def test_tick_orders_stamps(self):
        start = datetime(2025, 3, 1, tzinfo=timezone.utc)
        ticking = DeterministicClock(start, tick=1)

        assert [ticking.now() for _ in range(3)] == [start + timedelta(seconds=i) for i in range(3)]
