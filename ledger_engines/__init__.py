"""
Ledger Engines

Pure calculation layer: settlement grouping, transaction building, coverage,
balance checkpoints, discrepancy detection, investigation gating and the
delta value objects.  No I/O, no database access.
"""
