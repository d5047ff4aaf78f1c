"""
Per-account advisory lock.

Only one reconciliation run may mutate an account at a time.  The lock is
non-blocking: a second run for the same account fails fast with
``ReconciliationInProgressError`` instead of queueing behind the first.
Runs for different accounts never contend.
"""

from __future__ import annotations

import threading
from contextlib import contextmanager
from typing import Iterator

from ledger_kernel.exceptions import ReconciliationInProgressError
from ledger_kernel.logging_config import get_logger

logger = get_logger("services.account_lock")


class AccountLockRegistry:
    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: dict[str, threading.Lock] = {}

    def _lock_for(self, account_id: str) -> threading.Lock:
        with self._guard:
            return self._locks.setdefault(account_id, threading.Lock())

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        lock = self._lock_for(account_id)
        if not lock.acquire(blocking=False):
            logger.warning("account_lock_contended", extra={"account_id": account_id})
            raise ReconciliationInProgressError(account_id)
        try:
            yield
        finally:
            lock.release()

    def is_locked(self, account_id: str) -> bool:
        return self._lock_for(account_id).locked()


# Process-wide default; services accept their own for isolated tests.
_default_registry = AccountLockRegistry()


def default_lock_registry() -> AccountLockRegistry:
    return _default_registry
