"""
Ledger Kernel

Core types, persistence and logging for the reconciling ledger:
- Typed source rows and double-entry transactions
- Canonical asset registry (never auto-aliased)
- Structured JSON logging with run-scoped context
- Typed exception hierarchy
"""

__version__ = "0.1.0"
