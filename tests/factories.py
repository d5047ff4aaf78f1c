"""Row, fix and oracle builders shared across the test suite."""

from datetime import date, timedelta
from decimal import Decimal

from ledger_kernel.domain.rows import MappedRow, SourceRow

TEST_ACCOUNT_ID = "acct-test-001"

# Scenario date D used throughout.
SCENARIO_DATE = date(2024, 3, 4)


def make_row(
    ordinal: int,
    row_date: date | None = SCENARIO_DATE,
    action: str = "",
    symbol: str = "",
    quantity=None,
    amount=None,
    balance=None,
    settlement_date: date | None = None,
    description: str = "",
) -> SourceRow:
    """Build a SourceRow from plain values; numbers go through Decimal(str())."""

    def dec(value):
        return None if value is None else Decimal(str(value))

    return SourceRow(
        global_ordinal=ordinal,
        file_ordinal=ordinal + 1,
        mapped=MappedRow(
            date=row_date,
            action=action,
            symbol=symbol,
            quantity=dec(quantity),
            amount=dec(amount),
            balance=dec(balance),
            settlement_date=settlement_date,
            description=description,
        ),
    )


def scenario_rows() -> list[SourceRow]:
    """
    Rows A, B, C of the dual-row reference scenario.

    A: YOU BOUGHT 4 SPY for 2019.24 on D.
    B: balance-only settlement row for A, balance 46175.80.
    C: incoming transfer of 52264.00 on D+1, balance 98439.80.
    """
    return [
        make_row(0, action="YOU BOUGHT", symbol="SPY", quantity="4", amount="-2019.24"),
        make_row(1, quantity="0", amount="2019.24", balance="46175.80"),
        make_row(
            2,
            row_date=SCENARIO_DATE + timedelta(days=1),
            action="ELECTRONIC FUNDS TRANSFER RECEIVED",
            amount="52264.00",
            balance="98439.80",
        ),
    ]


def deposit_payload(amount: str, on: date = SCENARIO_DATE, rows=()) -> dict:
    return {
        "date": on.isoformat(),
        "description": "Opening balance",
        "transactionType": "deposit",
        "sourceRows": list(rows),
        "journalEntries": [
            {"type": "debit", "accountType": "cash", "accountName": "USD", "amount": amount},
            {
                "type": "credit",
                "accountType": "equity",
                "accountName": "Owner Contributions",
                "amount": amount,
            },
        ],
    }


def opening_deposit_fix(confidence: float, amount: str = "48195.04", on: date = SCENARIO_DATE) -> dict:
    """Oracle-shaped fix creating the funding deposit the scenario lacks."""
    return {
        "description": "Add missing opening deposit",
        "confidence": confidence,
        "reasoning": "Balance before the first trade implies prior funding",
        "deltas": [
            {
                "action": "create",
                "reason": "opening balance not present in export",
                "newTransactionData": deposit_payload(amount, on),
            }
        ],
        "impact": {"balanceChange": amount, "transactionsCreated": 1, "checkpointsResolved": 2},
        "supportingEvidence": ["row 1 balance exceeds computed by 48195.04"],
        "assumptions": ["funding predates the export window"],
    }


class StubOracle:
    """Returns ``response`` (or ``responder(request)``) and records requests."""

    def __init__(self, response=None, responder=None):
        self._response = response
        self._responder = responder
        self.requests = []

    def investigate(self, request):
        self.requests.append(request)
        if self._responder is not None:
            return self._responder(request)
        return self._response
