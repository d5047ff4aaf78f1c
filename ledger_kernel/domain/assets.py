"""
Assets -- canonical asset identity.

Responsibility:
    ``Asset`` is the identity a journal line's symbol resolves to.  Symbols
    are normalized (trimmed, uppercased) and nothing more: two distinct
    symbols are two distinct assets, however similar they look.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from dataclasses import dataclass, field
from enum import Enum
from uuid import NAMESPACE_URL, UUID, uuid5

_ASSET_NAMESPACE = uuid5(NAMESPACE_URL, "reconciling-ledger/asset")

_FIAT = frozenset({"USD", "EUR", "GBP"})
_CRYPTO = frozenset({"BTC", "ETH", "SOL", "ADA", "DOT", "MATIC"})
_CRYPTO_UNITS = frozenset({"BTC", "ETH", "SOL", "ADA"})
_COMMODITY = frozenset({"GLD", "SLV", "USO"})


def normalize_symbol(symbol: str) -> str:
    return (symbol or "").strip().upper()


class AssetClass(str, Enum):
    STOCK = "stock"
    ETF = "etf"
    MUTUAL_FUND = "mutual_fund"
    CRYPTO = "crypto"
    CASH = "cash"
    COMMODITY = "commodity"

    @classmethod
    def infer(cls, symbol: str) -> "AssetClass":
        """Best-effort class from the ticker shape alone."""
        upper = normalize_symbol(symbol)
        if upper in _FIAT or upper.endswith("XX"):
            return cls.CASH
        if upper in _CRYPTO:
            return cls.CRYPTO
        if len(upper) == 5 and upper.endswith("X"):
            return cls.MUTUAL_FUND
        if upper in _COMMODITY:
            return cls.COMMODITY
        return cls.STOCK


def infer_quantity_unit(symbol: str) -> str:
    """Crypto coins count in their own unit; everything else in shares."""
    upper = normalize_symbol(symbol)
    if upper in _CRYPTO_UNITS:
        return upper
    return "shares"


@dataclass(frozen=True, slots=True)
class Asset:
    symbol: str
    name: str
    asset_class: AssetClass
    id: UUID = field(compare=False)

    @classmethod
    def create(cls, symbol: str, name: str | None = None) -> "Asset":
        normalized = normalize_symbol(symbol)
        return cls(
            symbol=normalized,
            name=name or normalized,
            asset_class=AssetClass.infer(normalized),
            id=uuid5(_ASSET_NAMESPACE, normalized),
        )

    @property
    def is_cash_equivalent(self) -> bool:
        return self.asset_class == AssetClass.CASH
