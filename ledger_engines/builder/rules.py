"""
ledger_engines.builder.rules -- Prioritized (predicate, leg template) rule table.

Responsibility:
    Map a primary row's free-text action to the journal-leg shape of its
    transaction.  Each ``BuildRule`` pairs a predicate on the uppercased
    action with a template producing the transaction type and legs.
    Institutions add rules with ``RuleTable.register`` without touching
    existing ones; anything unmatched goes to the generic fallback.

Architecture position:
    Engines -- pure, zero I/O.  Asset legs resolve through the injected
    AssetRegistry, which may create a canonical Asset as a side effect.

Default rule order (first match wins):

    priority | matches (action contains)   | legs
    ---------|-----------------------------|-------------------------------------
    10       | BOUGHT                      | Dr asset(sym, qty) / Cr cash
    20       | SOLD                        | Dr cash / Cr asset(sym, |qty|)
    30       | DIVIDEND, qty != 0          | Dr asset(sym, qty) / Cr Dividend Income
    31       | DIVIDEND                    | Dr cash / Cr Dividend Income
    40       | TRANSFER                    | cash vs Owner Contributions/Withdrawals
    50       | INTEREST                    | Dr cash / Cr Interest Income
    60       | FEE, COMMISSION             | Dr Fees & Commissions / Cr cash
    70       | DEPOSIT                     | Dr cash / Cr Owner Contributions
    80       | WITHDRAWAL                  | Dr Owner Withdrawals / Cr cash
    fallback | anything else               | generic asset or cash shape

Failure modes:
    - InvalidQuantityError when an asset rule has no positive quantity.
    - MissingSymbolError when an asset rule has no symbol.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from ledger_engines.settlement import TransactionUnit
from ledger_kernel.domain.asset_registry import AssetRegistry
from ledger_kernel.domain.assets import infer_quantity_unit
from ledger_kernel.domain.ledger import (
    CASH_ACCOUNT,
    AccountClass,
    JournalLine,
    Side,
    TransactionType,
)
from ledger_kernel.domain.rows import SourceRow
from ledger_kernel.domain.values import ZERO
from ledger_kernel.exceptions import InvalidQuantityError, MissingSymbolError

DIVIDEND_INCOME = "Dividend Income"
INTEREST_INCOME = "Interest Income"
OTHER_INCOME = "Other Income"
OTHER_EXPENSES = "Other Expenses"
FEES_AND_COMMISSIONS = "Fees & Commissions"
OWNER_CONTRIBUTIONS = "Owner Contributions"
OWNER_WITHDRAWALS = "Owner Withdrawals"


@dataclass(frozen=True)
class BuildContext:
    """Everything a leg template may look at for one unit."""

    unit: TransactionUnit
    primary: SourceRow
    registry: AssetRegistry
    institution: str | None = None

    @property
    def action(self) -> str:
        return self.primary.mapped.action.upper()

    @property
    def symbol(self) -> str:
        return self.primary.mapped.symbol

    @property
    def quantity(self) -> Decimal | None:
        return self.primary.mapped.quantity

    @property
    def amount(self) -> Decimal:
        """Signed amount.  The builder guarantees it is present and nonzero."""
        return self.primary.mapped.amount or ZERO

    @property
    def abs_amount(self) -> Decimal:
        return abs(self.amount)

    @property
    def primary_ordinal(self) -> int:
        return self.primary.global_ordinal

    def asset_line(self, side: Side, amount: Decimal, quantity: Decimal) -> JournalLine:
        if not self.symbol:
            raise MissingSymbolError(self.primary_ordinal, self.primary.mapped.action)
        asset = self.registry.resolve(self.symbol, institution=self.institution)
        return JournalLine(
            account_class=AccountClass.ASSET,
            account_name=asset.symbol,
            side=side,
            amount=amount,
            quantity=quantity,
            quantity_unit=infer_quantity_unit(asset.symbol),
            asset_symbol=asset.symbol,
            source_rows=(self.primary_ordinal,),
        )

    def cash_line(self, side: Side, amount: Decimal) -> JournalLine:
        # The settlement rows carry the cash side of a dual-row event.
        cash = self.registry.resolve(CASH_ACCOUNT)
        return JournalLine(
            account_class=AccountClass.CASH,
            account_name=cash.symbol,
            side=side,
            amount=amount,
            asset_symbol=cash.symbol,
            source_rows=self.unit.row_ordinals,
        )

    def named_line(self, account_class: AccountClass, name: str, side: Side, amount: Decimal) -> JournalLine:
        return JournalLine(
            account_class=account_class,
            account_name=name,
            side=side,
            amount=amount,
            source_rows=(self.primary_ordinal,),
        )

    def positive_quantity(self, absolute: bool = False) -> Decimal:
        qty = self.quantity
        if qty is not None and absolute:
            qty = abs(qty)
        if qty is None or qty <= ZERO:
            raise InvalidQuantityError(self.primary_ordinal, self.quantity, self.primary.mapped.action)
        return qty


LegTemplate = Callable[[BuildContext], tuple[TransactionType, tuple[JournalLine, ...]]]
Predicate = Callable[[BuildContext], bool]


@dataclass(frozen=True)
class BuildRule:
    name: str
    predicate: Predicate
    template: LegTemplate
    priority: int = 100


def action_contains(*needles: str) -> Predicate:
    upper = tuple(n.upper() for n in needles)
    return lambda ctx: any(n in ctx.action for n in upper)


# ---------------------------------------------------------------------------
# Leg templates
# ---------------------------------------------------------------------------


def buy_legs(ctx: BuildContext):
    qty = ctx.positive_quantity()
    return TransactionType.BUY, (
        ctx.asset_line(Side.DEBIT, ctx.abs_amount, qty),
        ctx.cash_line(Side.CREDIT, ctx.abs_amount),
    )


def sell_legs(ctx: BuildContext):
    qty = ctx.positive_quantity(absolute=True)
    return TransactionType.SELL, (
        ctx.cash_line(Side.DEBIT, ctx.abs_amount),
        ctx.asset_line(Side.CREDIT, ctx.abs_amount, qty),
    )


def reinvested_dividend_legs(ctx: BuildContext):
    qty = ctx.positive_quantity(absolute=True)
    return TransactionType.DIVIDEND, (
        ctx.asset_line(Side.DEBIT, ctx.abs_amount, qty),
        ctx.named_line(AccountClass.INCOME, DIVIDEND_INCOME, Side.CREDIT, ctx.abs_amount),
    )


def cash_dividend_legs(ctx: BuildContext):
    return TransactionType.DIVIDEND, (
        ctx.cash_line(Side.DEBIT, ctx.abs_amount),
        ctx.named_line(AccountClass.INCOME, DIVIDEND_INCOME, Side.CREDIT, ctx.abs_amount),
    )


def _is_inflow(ctx: BuildContext) -> bool:
    if ctx.amount != ZERO:
        return ctx.amount > ZERO
    return "FROM" in ctx.action or "RECEIVED" in ctx.action


def transfer_legs(ctx: BuildContext):
    if _is_inflow(ctx):
        return TransactionType.TRANSFER, (
            ctx.cash_line(Side.DEBIT, ctx.abs_amount),
            ctx.named_line(AccountClass.EQUITY, OWNER_CONTRIBUTIONS, Side.CREDIT, ctx.abs_amount),
        )
    return TransactionType.TRANSFER, (
        ctx.named_line(AccountClass.EQUITY, OWNER_WITHDRAWALS, Side.DEBIT, ctx.abs_amount),
        ctx.cash_line(Side.CREDIT, ctx.abs_amount),
    )


def interest_legs(ctx: BuildContext):
    return TransactionType.INTEREST, (
        ctx.cash_line(Side.DEBIT, ctx.abs_amount),
        ctx.named_line(AccountClass.INCOME, INTEREST_INCOME, Side.CREDIT, ctx.abs_amount),
    )


def fee_legs(ctx: BuildContext):
    return TransactionType.FEE, (
        ctx.named_line(AccountClass.EXPENSE, FEES_AND_COMMISSIONS, Side.DEBIT, ctx.abs_amount),
        ctx.cash_line(Side.CREDIT, ctx.abs_amount),
    )


def deposit_legs(ctx: BuildContext):
    return TransactionType.DEPOSIT, (
        ctx.cash_line(Side.DEBIT, ctx.abs_amount),
        ctx.named_line(AccountClass.EQUITY, OWNER_CONTRIBUTIONS, Side.CREDIT, ctx.abs_amount),
    )


def withdrawal_legs(ctx: BuildContext):
    return TransactionType.WITHDRAWAL, (
        ctx.named_line(AccountClass.EQUITY, OWNER_WITHDRAWALS, Side.DEBIT, ctx.abs_amount),
        ctx.cash_line(Side.CREDIT, ctx.abs_amount),
    )


def generic_legs(ctx: BuildContext):
    """
    Fallback for unrecognized actions.

    With a symbol and a nonzero quantity: negative amount buys the asset,
    positive sells it.  Otherwise a pure cash movement against
    Other Income / Other Expenses.
    """
    qty = ctx.quantity
    if qty is not None and qty != ZERO and ctx.symbol:
        if ctx.amount < ZERO:
            return TransactionType.BUY, (
                ctx.asset_line(Side.DEBIT, ctx.abs_amount, abs(qty)),
                ctx.cash_line(Side.CREDIT, ctx.abs_amount),
            )
        return TransactionType.SELL, (
            ctx.cash_line(Side.DEBIT, ctx.abs_amount),
            ctx.asset_line(Side.CREDIT, ctx.abs_amount, abs(qty)),
        )

    if ctx.amount > ZERO:
        return TransactionType.OTHER, (
            ctx.cash_line(Side.DEBIT, ctx.abs_amount),
            ctx.named_line(AccountClass.INCOME, OTHER_INCOME, Side.CREDIT, ctx.abs_amount),
        )
    return TransactionType.OTHER, (
        ctx.named_line(AccountClass.EXPENSE, OTHER_EXPENSES, Side.DEBIT, ctx.abs_amount),
        ctx.cash_line(Side.CREDIT, ctx.abs_amount),
    )


def _has_quantity(ctx: BuildContext) -> bool:
    return ctx.quantity is not None and ctx.quantity != ZERO


DEFAULT_RULES: tuple[BuildRule, ...] = (
    BuildRule("buy", action_contains("BOUGHT"), buy_legs, 10),
    BuildRule("sell", action_contains("SOLD"), sell_legs, 20),
    BuildRule(
        "reinvested_dividend",
        lambda ctx: "DIVIDEND" in ctx.action and _has_quantity(ctx),
        reinvested_dividend_legs,
        30,
    ),
    BuildRule("cash_dividend", action_contains("DIVIDEND"), cash_dividend_legs, 31),
    BuildRule("transfer", action_contains("TRANSFER"), transfer_legs, 40),
    BuildRule("interest", action_contains("INTEREST"), interest_legs, 50),
    BuildRule("fee", action_contains("FEE", "COMMISSION"), fee_legs, 60),
    BuildRule("deposit", action_contains("DEPOSIT"), deposit_legs, 70),
    BuildRule("withdrawal", action_contains("WITHDRAWAL"), withdrawal_legs, 80),
)

FALLBACK_RULE = BuildRule("generic", lambda ctx: True, generic_legs, 10_000)


class RuleTable:
    """
    Ordered rule list.  Lower priority numbers are tried first; equal
    priorities keep registration order.
    """

    def __init__(self, rules: tuple[BuildRule, ...] = DEFAULT_RULES, fallback: BuildRule = FALLBACK_RULE):
        self._rules: list[BuildRule] = sorted(rules, key=lambda r: r.priority)
        self._fallback = fallback

    def register(self, rule: BuildRule) -> None:
        self._rules.append(rule)
        self._rules.sort(key=lambda r: r.priority)

    def match(self, ctx: BuildContext) -> BuildRule:
        for rule in self._rules:
            if rule.predicate(ctx):
                return rule
        return self._fallback

    @property
    def rules(self) -> tuple[BuildRule, ...]:
        return tuple(self._rules)
