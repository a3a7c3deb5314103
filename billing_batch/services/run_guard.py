"""
OrgRunGuard -- at most one active billing run per organisation.

Contract:
    ``hold(org_id)`` is a non-blocking single-flight lock keyed by org.
    A second caller for the same org gets BillingRunInProgressError at
    once instead of waiting; callers for other orgs are unaffected.

    This guard covers one process.  Across processes the run executor
    additionally locks the organisation row (``FOR UPDATE NOWAIT``).
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import contextmanager
from uuid import UUID

from billing_kernel.exceptions import BillingRunInProgressError
from billing_kernel.logging_config import get_logger

logger = get_logger("batch.run_guard")


class OrgRunGuard:

    def __init__(self) -> None:
        self._registry_lock = threading.Lock()
        # Orgs with a run in flight.  Entries leave on release, so the set
        # only ever holds the orgs currently running.
        self._held: set[str] = set()

    def is_held(self, org_id: UUID | str) -> bool:
        with self._registry_lock:
            return str(org_id) in self._held

    @property
    def held_count(self) -> int:
        with self._registry_lock:
            return len(self._held)

    @contextmanager
    def hold(self, org_id: UUID | str) -> Iterator[None]:
        key = str(org_id)
        with self._registry_lock:
            if key in self._held:
                acquired = False
            else:
                self._held.add(key)
                acquired = True
        if not acquired:
            logger.warning("billing_run_rejected_in_progress", extra={"org_id": key})
            raise BillingRunInProgressError(key)
        try:
            yield
        finally:
            with self._registry_lock:
                self._held.discard(key)


# Process-wide guard shared by every executor that is not given its own.
default_run_guard = OrgRunGuard()
