"""Transaction construction: rule table and builder."""

from ledger_engines.builder.builder import TransactionBuilder
from ledger_engines.builder.rules import (
    DEFAULT_RULES,
    FALLBACK_RULE,
    BuildContext,
    BuildRule,
    RuleTable,
    action_contains,
)

__all__ = [
    "BuildContext",
    "BuildRule",
    "DEFAULT_RULES",
    "FALLBACK_RULE",
    "RuleTable",
    "TransactionBuilder",
    "action_contains",
]
