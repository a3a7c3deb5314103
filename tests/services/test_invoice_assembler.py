"""
Tests for InvoiceAssembler and build_line_items.
"""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select

from billing_kernel.domain.dtos import (
    BillableParticipation,
    InvoiceStatus,
    PayerGroup,
    PayerRef,
    PayerType,
)
from billing_kernel.domain.rates import RateCardInfo, RateCardResolver
from billing_kernel.exceptions import DuplicateRunInvoiceError, PayerBillingError
from billing_kernel.models import Invoice
from billing_kernel.services.invoice_assembler import InvoiceAssembler, build_line_items

FLAT_RATE = RateCardResolver([RateCardInfo(30, 3000)], fallback_rate_minor=None)


def _group(payer: PayerRef, lessons_and_students) -> PayerGroup:
    group = PayerGroup(payer=payer)
    for lesson, student in lessons_and_students:
        group.add(
            BillableParticipation(
                lesson_id=lesson.id,
                lesson_title=lesson.title,
                start_at=lesson.start_at,
                duration_minutes=lesson.duration_minutes,
                student_id=student.id,
                student_name=student.full_name,
                payer=payer,
            )
        )
    return group


@pytest.fixture
def assembler(db_session, clock, credit_ledger):
    return InvoiceAssembler(db_session, clock, credit_ledger)


@pytest.fixture
def household(org, make_student, make_guardian, make_lesson):
    """One guardian paying for one student with three 30-minute March lessons."""
    student = make_student(org, "Fanny", "Mendelssohn")
    guardian = make_guardian(org, "Abraham Mendelssohn", "abraham@example.com", students=[student])
    lessons = [
        make_lesson(org, datetime(2026, 3, day, 16, 0, tzinfo=timezone.utc), [student])
        for day in (3, 10, 17)
    ]
    payer = PayerRef(PayerType.GUARDIAN, guardian.id, guardian.full_name, guardian.email)
    return student, guardian, _group(payer, [(lesson, student) for lesson in lessons])


def _assemble(assembler, org, group, rate=FLAT_RATE, vat="0", **kwargs):
    return assembler.assemble(
        group, rate, Decimal(vat), org_id=org.id, currency_code="GBP", **kwargs,
    )


class TestBuildLineItems:

    def test_one_line_per_lesson(self, household):
        _, _, group = household

        lines = build_line_items(group, FLAT_RATE)

        assert len(lines) == 3
        assert lines[0].description == "Piano - Fanny Mendelssohn (2026-03-03)"
        assert all(line.amount_minor == 3000 for line in lines)
        assert [line.linked_lesson_id for line in lines] == [p.lesson_id for p in group.lessons]


class TestAssemble:

    def test_invoice_totals_and_dates(self, assembler, db_session, org, household, clock):
        _, guardian, group = household

        result = _assemble(assembler, org, group)

        assert result.subtotal_minor == 9000
        assert result.tax_minor == 0
        assert result.credit_offset_minor == 0
        assert result.total_minor == 9000
        assert result.line_count == 3
        assert result.invoice_number == "INV-00001"

        invoice = db_session.get(Invoice, result.invoice_id)
        assert invoice.status == InvoiceStatus.DRAFT.value
        assert invoice.payer_guardian_id == guardian.id
        assert invoice.payer_student_id is None
        assert invoice.issue_date == clock.today()
        assert invoice.due_date == clock.today() + timedelta(days=14)
        assert [item.position for item in invoice.items] == [1, 2, 3]

    def test_vat_rounds_half_up(self, assembler, org, household):
        _, _, group = household

        result = _assemble(assembler, org, group, rate=lambda minutes: 1111, vat="20")

        assert result.subtotal_minor == 3333
        assert result.tax_minor == 667
        assert result.total_minor == 4000

    def test_credit_offsets_total(self, assembler, credit_ledger, org, household):
        student, _, group = household
        credit = credit_ledger.issue_credit(student.id, 3000)

        result = _assemble(assembler, org, group)

        assert result.credit_offset_minor == 3000
        assert result.total_minor == 6000
        assert result.consumed_credit_ids == (credit.credit_id,)
        assert credit_ledger.available_credits([student.id]) == []

    def test_credit_larger_than_invoice_leaves_remainder(
        self, assembler, credit_ledger, org, household,
    ):
        student, _, group = household
        credit_ledger.issue_credit(student.id, 10000)

        result = _assemble(assembler, org, group, vat="0")

        assert result.credit_offset_minor == 9000
        assert result.total_minor == 0
        (remainder,) = credit_ledger.available_credits([student.id])
        assert remainder.credit_value_minor == 1000

    def test_credit_covers_tax_too(self, assembler, credit_ledger, org, household):
        student, _, group = household
        credit_ledger.issue_credit(student.id, 20000)

        result = _assemble(assembler, org, group, vat="20")

        assert result.tax_minor == 1800
        assert result.credit_offset_minor == 10800
        assert result.total_minor == 0

    def test_numbers_sequential_per_org(self, assembler, make_org, org, household, make_student):
        _, _, group = household
        other_org = make_org("Other School")
        adult = make_student(other_org, "Solo", "Adult", email="solo@example.com")
        other_payer = PayerRef(PayerType.STUDENT, adult.id, adult.full_name, adult.email)

        first = _assemble(assembler, org, group)
        other = _assemble(assembler, other_org, PayerGroup(payer=other_payer))
        second = _assemble(assembler, org, PayerGroup(payer=group.payer))

        assert first.invoice_number == "INV-00001"
        assert second.invoice_number == "INV-00002"
        assert other.invoice_number == "INV-00001"

    def test_student_payer(self, assembler, db_session, org, make_student, make_lesson):
        adult = make_student(org, "Solo", "Adult", email="solo@example.com")
        lesson = make_lesson(org, datetime(2026, 3, 5, 10, tzinfo=timezone.utc), [adult])
        payer = PayerRef(PayerType.STUDENT, adult.id, adult.full_name, adult.email)

        result = _assemble(assembler, org, _group(payer, [(lesson, adult)]))

        invoice = db_session.get(Invoice, result.invoice_id)
        assert invoice.payer_student_id == adult.id
        assert invoice.payer_guardian_id is None
        assert invoice.payer_key == f"student:{adult.id}"


class TestAssembleFailures:

    def test_missing_email_fails_payer(self, assembler, db_session, org, household):
        _, guardian, group = household
        no_email = PayerRef(PayerType.GUARDIAN, guardian.id, guardian.full_name, None)
        group = PayerGroup(payer=no_email, lessons=group.lessons, student_ids=group.student_ids)

        with pytest.raises(PayerBillingError) as exc_info:
            _assemble(assembler, org, group)

        failed = exc_info.value.to_failed_payer()
        assert failed["payerId"] == str(guardian.id)
        assert failed["payerType"] == "guardian"
        assert failed["payerEmail"] is None
        assert "email" in failed["error"]
        assert db_session.execute(select(func.count(Invoice.id))).scalar_one() == 0

    def test_missing_email_allowed_when_not_required(
        self, db_session, clock, credit_ledger, org, household,
    ):
        _, guardian, group = household
        assembler = InvoiceAssembler(db_session, clock, credit_ledger, require_payer_email=False)
        no_email = PayerRef(PayerType.GUARDIAN, guardian.id, guardian.full_name, None)

        result = _assemble(
            assembler, org, PayerGroup(payer=no_email, lessons=group.lessons),
        )

        assert result.total_minor == 9000

    def test_unpriceable_lesson_fails_payer(self, assembler, org, household):
        _, _, group = household

        with pytest.raises(PayerBillingError) as exc_info:
            _assemble(assembler, org, group, rate=RateCardResolver([RateCardInfo(60, 5000)]))

        assert "30-minute" in exc_info.value.reason

    def test_duplicate_for_same_run_rejected(self, assembler, org, household):
        _, _, group = household
        run_id = uuid4()
        first = _assemble(assembler, org, group, billing_run_id=run_id)

        with pytest.raises(DuplicateRunInvoiceError) as exc_info:
            _assemble(assembler, org, group, billing_run_id=run_id)

        assert exc_info.value.invoice_id == str(first.invoice_id)

    def test_manual_invoices_not_deduplicated(self, assembler, org, household):
        _, _, group = household

        first = _assemble(assembler, org, group)
        second = _assemble(assembler, org, group)

        assert first.invoice_id != second.invoice_id
