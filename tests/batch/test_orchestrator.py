"""Tests for BillingOrchestrator wiring."""

from datetime import date, datetime, timedelta, timezone

from billing_config import get_active_config
from billing_kernel.models import LessonStatus
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.credit_ledger import CreditLedger
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.payment_recorder import PaymentRecorder

from billing_batch.domain.types import BillingRunRequest
from billing_batch.orchestrator import BillingOrchestrator
from billing_batch.services.run_executor import BillingRunExecutor


class TestBillingOrchestrator:

    def test_from_session_loads_default_settings(self, db_session):
        orchestrator = BillingOrchestrator.from_session(db_session)

        assert orchestrator.settings.name == "default"
        assert orchestrator.settings == get_active_config()

    def test_creates_services(self, db_session, clock, settings):
        orchestrator = BillingOrchestrator.from_session(db_session, clock=clock, settings=settings)

        assert isinstance(orchestrator.create_executor(), BillingRunExecutor)
        assert isinstance(orchestrator.create_credit_ledger(), CreditLedger)
        assert isinstance(orchestrator.create_payment_recorder(), PaymentRecorder)
        assert isinstance(orchestrator.create_invoice_lifecycle(), InvoiceLifecycleService)

    def test_credit_ledger_follows_settings(
        self, db_session, clock, org, make_student, make_lesson,
    ):
        settings = get_active_config(
            overrides={"default_cancellation_notice_hours": 6, "credit_expiry_days": 30},
        )
        orchestrator = BillingOrchestrator.from_session(db_session, clock=clock, settings=settings)
        student = make_student(org, email="s@example.com")
        lesson = make_lesson(
            org, clock.now_utc() + timedelta(days=1), [student], status=LessonStatus.SCHEDULED,
        )

        credit, eligibility = orchestrator.create_credit_ledger().issue_credit_for_cancellation(
            lesson.id, student.id, lesson.start_at - timedelta(hours=8), 3000,
        )

        assert eligibility.required_hours == 6
        assert credit.expires_at == clock.now_utc() + timedelta(days=30)

    def test_executor_uses_invoice_prefix(
        self, db_session, clock, org, make_student, make_lesson, run_guard, test_actor_id,
    ):
        settings = get_active_config(overrides={"invoice_number_prefix": "MUS"})
        orchestrator = BillingOrchestrator(db_session, settings, clock=clock, run_guard=run_guard)
        student = make_student(org, email="s@example.com")
        make_lesson(org, datetime(2026, 3, 2, 10, tzinfo=timezone.utc), [student])

        run = orchestrator.create_executor().create_run(
            BillingRunRequest(org.id, date(2026, 3, 1), date(2026, 3, 31)), test_actor_id,
        )

        (invoice,) = InvoiceSelector(db_session).list_for_run(run.run_id)
        assert invoice.invoice_number == "MUS-00001"
