"""
Values -- money parsing, rounding and tolerance constants.

Responsibility:
    The one place raw export text becomes Decimal, and the one place the
    balance tolerance and floating-point noise epsilon are defined.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - No floats.  Every amount is a Decimal parsed from text.
    - A transaction is balanced when |debits - credits| < BALANCE_TOLERANCE.
    - Only an imbalance strictly below NOISE_EPSILON may be absorbed, and
      the caller must log it when it does.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum

MONEY_QUANTUM = Decimal("0.01")
BALANCE_TOLERANCE = Decimal("0.01")
NOISE_EPSILON = Decimal("0.005")
ZERO = Decimal("0")

_NULL_TOKENS = frozenset({"", "--", "-", "n/a", "na", "none", "null"})

_DATE_FORMATS = (
    "%m/%d/%Y",
    "%Y-%m-%d",
    "%m/%d/%y",
    "%Y/%m/%d",
    "%m-%d-%Y",
    "%b %d, %Y",
)


def round_money(amount: Decimal) -> Decimal:
    """Round to cents, half-up."""
    return amount.quantize(MONEY_QUANTUM, rounding=ROUND_HALF_UP)


def parse_decimal(raw: object) -> Decimal | None:
    """
    Parse an export cell into a Decimal.

    Strips ``$``, ``,``, ``+`` and whitespace; ``(12.50)`` is negative.
    Empty cells, placeholder dashes and garbage return None.
    """
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        return raw
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return Decimal(raw)
    if isinstance(raw, float):
        return Decimal(str(raw))

    text = str(raw).strip()
    if text.lower() in _NULL_TOKENS:
        return None

    negative = False
    if text.startswith("(") and text.endswith(")"):
        negative = True
        text = text[1:-1]

    text = text.replace("$", "").replace(",", "").replace("+", "").strip()
    if not text:
        return None

    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return -value if negative else value


def parse_date(raw: object) -> date | None:
    """Parse an export date cell.  Returns None when nothing matches."""
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw

    text = str(raw).strip()
    if not text or text.lower() in _NULL_TOKENS:
        return None

    # Fidelity appends "as of MM/DD/YYYY" to some run dates.
    if " as of " in text.lower():
        text = text[: text.lower().index(" as of ")].strip()

    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    # ISO timestamps such as 2024-01-15T10:30:00Z (Coinbase).
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Severity
# ---------------------------------------------------------------------------


class Severity(str, Enum):
    """Magnitude bucket for a balance discrepancy."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def for_amount(cls, discrepancy: Decimal) -> "Severity":
        """critical >1000, high >100, medium >10, low >0.01, else none."""
        magnitude = abs(discrepancy)
        if magnitude > Decimal("1000"):
            return cls.CRITICAL
        if magnitude > Decimal("100"):
            return cls.HIGH
        if magnitude > Decimal("10"):
            return cls.MEDIUM
        if magnitude > BALANCE_TOLERANCE:
            return cls.LOW
        return cls.NONE


_SEVERITY_RANK = {
    Severity.NONE: 0,
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}
