"""
Institution profile schema.

Frozen dataclasses parsed from the YAML profiles under ``profiles/``.  A
profile is everything institution-specific the core needs: how rows pair
into settlement units, which columns mean what, which instrument carries
the running balance, and at which date granularity the balance is compared.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields

SETTLEMENT_POLICIES = ("dual_row", "none")
BALANCE_DATE_BASES = ("trade", "settlement")
THOROUGHNESS_LEVELS = ("quick", "balanced", "thorough")


@dataclass(frozen=True)
class FieldMappingDef:
    """Raw column names per standardized field, as written in YAML."""

    date: str | None = None
    action: str | None = None
    amount: str | None = None
    balance: str | None = None
    symbol: str | None = None
    quantity: str | None = None
    price: str | None = None
    description: str | None = None
    settlement_date: str | None = None

    def as_dict(self) -> dict[str, str | None]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


@dataclass(frozen=True)
class ReconciliationSettings:
    max_rounds: int = 3
    thoroughness: str = "balanced"
    context_days: int | None = None  # None: use the thoroughness preset
    auto_apply_threshold: float = 0.95
    approval_threshold: float = 0.70
    oracle_timeout_seconds: float = 60.0
    construction_workers: int = 4

    def __post_init__(self) -> None:
        if self.max_rounds < 1:
            raise ValueError(f"max_rounds must be >= 1, got {self.max_rounds}")
        if self.thoroughness not in THOROUGHNESS_LEVELS:
            raise ValueError(f"Unknown thoroughness {self.thoroughness!r}")
        if self.context_days is not None and self.context_days < 0:
            raise ValueError(f"context_days must be >= 0, got {self.context_days}")
        if not 0.0 <= self.approval_threshold <= self.auto_apply_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= approval <= auto_apply <= 1, got "
                f"{self.approval_threshold} / {self.auto_apply_threshold}"
            )
        if self.oracle_timeout_seconds <= 0:
            raise ValueError("oracle_timeout_seconds must be positive")
        if self.construction_workers < 1:
            raise ValueError("construction_workers must be >= 1")


@dataclass(frozen=True)
class InstitutionProfile:
    """One institution's export conventions and reconciliation settings."""

    name: str
    display_name: str
    settlement_policy: str = "none"
    balance_instrument: str | None = None
    balance_date_basis: str = "trade"
    field_mapping: FieldMappingDef | None = None
    # (alias, canonical symbol) pairs registered explicitly, never inferred.
    asset_aliases: tuple[tuple[str, str], ...] = ()
    reconciliation: ReconciliationSettings = field(default_factory=ReconciliationSettings)
    checksum: str = ""

    def __post_init__(self) -> None:
        if self.settlement_policy not in SETTLEMENT_POLICIES:
            raise ValueError(
                f"Unknown settlement_policy {self.settlement_policy!r} "
                f"(expected one of {SETTLEMENT_POLICIES})"
            )
        if self.balance_date_basis not in BALANCE_DATE_BASES:
            raise ValueError(
                f"Unknown balance_date_basis {self.balance_date_basis!r} "
                f"(expected one of {BALANCE_DATE_BASES})"
            )
