"""
BillingOrchestrator -- DI container for billing runs and invoice services.

Contract:
    Composes the run executor and the kernel services that share its
    session, clock and settings.  ``from_session()`` is the canonical
    factory used by the request handlers and the CLI.

Architecture: billing_batch (top-level).  Nothing in billing_kernel
    imports from billing_batch.

Invariants enforced:
    - Clock injection: every service receives the same Clock.
    - Settings flow from ``billing_config.get_active_config()`` only.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from billing_config import BillingSettings, get_active_config
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.logging_config import get_logger
from billing_kernel.services.credit_ledger import CreditLedger
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.payment_recorder import PaymentRecorder

from billing_batch.services.run_executor import BillingRunExecutor
from billing_batch.services.run_guard import OrgRunGuard, default_run_guard

logger = get_logger("batch.orchestrator")


class BillingOrchestrator:
    """DI container for the billing system.

    Non-goals:
        - Does NOT manage session lifecycle -- caller controls commits.
    """

    def __init__(
        self,
        session: Session,
        settings: BillingSettings,
        clock: Clock | None = None,
        run_guard: OrgRunGuard | None = None,
    ) -> None:
        self._session = session
        self._settings = settings
        self._clock = clock or SystemClock()
        self._guard = run_guard or default_run_guard

    @classmethod
    def from_session(
        cls,
        session: Session,
        clock: Clock | None = None,
        settings: BillingSettings | None = None,
        run_guard: OrgRunGuard | None = None,
    ) -> BillingOrchestrator:
        """Create a fully wired orchestrator from a session."""
        return cls(
            session=session,
            settings=settings or get_active_config(),
            clock=clock,
            run_guard=run_guard,
        )

    @property
    def settings(self) -> BillingSettings:
        return self._settings

    def create_executor(self) -> BillingRunExecutor:
        return BillingRunExecutor(
            self._session,
            clock=self._clock,
            settings=self._settings,
            run_guard=self._guard,
        )

    def create_credit_ledger(self) -> CreditLedger:
        return CreditLedger(
            self._session,
            self._clock,
            default_notice_hours=self._settings.default_cancellation_notice_hours,
            credit_expiry_days=self._settings.credit_expiry_days,
        )

    def create_payment_recorder(self) -> PaymentRecorder:
        return PaymentRecorder(self._session, self._clock)

    def create_invoice_lifecycle(self) -> InvoiceLifecycleService:
        return InvoiceLifecycleService(self._session, self._clock)
