"""
Tests for CreditLedger: issuance, cancellation eligibility, availability
and redemption (including partial redemption remainders).
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from billing_kernel.domain.dtos import CreditClaimOutcome
from billing_kernel.exceptions import (
    CreditAlreadyRedeemedError,
    InvalidAmountError,
    LessonNotFoundError,
    StudentNotFoundError,
)
from billing_kernel.models import LessonStatus, MakeUpCredit
from billing_kernel.services.credit_ledger import CreditLedger


@pytest.fixture
def student(org, make_student, make_guardian):
    student = make_student(org)
    make_guardian(org, students=[student])
    return student


@pytest.fixture
def upcoming_lesson(org, student, make_lesson, clock):
    return make_lesson(
        org, clock.now_utc() + timedelta(days=2), [student], status=LessonStatus.SCHEDULED,
    )


class TestIssueCredit:

    def test_issue(self, credit_ledger, student, clock, test_actor_id):
        credit = credit_ledger.issue_credit(student.id, 3000, actor_id=test_actor_id)

        assert credit.credit_value_minor == 3000
        assert credit.student_id == student.id
        assert credit.org_id == student.org_id
        assert credit.issued_at == clock.now_utc()
        assert credit.expires_at is None
        assert credit.redeemed_at is None

    @pytest.mark.parametrize("value", [0, -100])
    def test_non_positive_value_rejected(self, credit_ledger, student, value):
        with pytest.raises(InvalidAmountError):
            credit_ledger.issue_credit(student.id, value)

    def test_unknown_student(self, credit_ledger):
        with pytest.raises(StudentNotFoundError):
            credit_ledger.issue_credit(uuid4(), 1000)


class TestCancellationCredit:

    def test_enough_notice_issues_credit(
        self, credit_ledger, student, upcoming_lesson, clock,
    ):
        cancelled_at = upcoming_lesson.start_at - timedelta(hours=30)

        credit, eligibility = credit_ledger.issue_credit_for_cancellation(
            upcoming_lesson.id, student.id, cancelled_at, 3000,
        )

        assert eligibility.eligible
        assert eligibility.hours_notice == 30
        assert credit.issued_for_lesson_id == upcoming_lesson.id
        assert credit.expires_at == clock.now_utc() + timedelta(days=90)

    def test_short_notice_refused(self, credit_ledger, student, upcoming_lesson):
        cancelled_at = upcoming_lesson.start_at - timedelta(hours=2)

        credit, eligibility = credit_ledger.issue_credit_for_cancellation(
            upcoming_lesson.id, student.id, cancelled_at, 3000,
        )

        assert credit is None
        assert not eligibility.eligible
        assert eligibility.required_hours == 24

    def test_org_notice_overrides_default(
        self, db_session, clock, make_org, make_student, make_lesson,
    ):
        org = make_org(cancellation_notice_hours=48)
        student = make_student(org, email="s@example.com")
        lesson = make_lesson(org, clock.now_utc() + timedelta(days=3), [student])
        ledger = CreditLedger(db_session, clock, default_notice_hours=24)

        credit, eligibility = ledger.issue_credit_for_cancellation(
            lesson.id, student.id, lesson.start_at - timedelta(hours=30), 3000,
        )

        assert credit is None
        assert eligibility.required_hours == 48

    def test_never_expiring_when_expiry_disabled(
        self, db_session, clock, student, upcoming_lesson,
    ):
        ledger = CreditLedger(db_session, clock, credit_expiry_days=None)

        credit, _ = ledger.issue_credit_for_cancellation(
            upcoming_lesson.id, student.id, upcoming_lesson.start_at - timedelta(days=1), 3000,
        )

        assert credit.expires_at is None

    def test_unknown_lesson(self, credit_ledger, student, clock):
        with pytest.raises(LessonNotFoundError):
            credit_ledger.issue_credit_for_cancellation(uuid4(), student.id, clock.now_utc(), 100)


class TestAvailability:

    def test_expired_and_redeemed_credits_unavailable(self, credit_ledger, student, clock):
        now = clock.now_utc()
        live = credit_ledger.issue_credit(student.id, 1000, expires_at=now + timedelta(days=1))
        credit_ledger.issue_credit(student.id, 1000, expires_at=now)  # expires exactly now
        credit_ledger.issue_credit(student.id, 1000, expires_at=now - timedelta(days=1))
        redeemed = credit_ledger.issue_credit(student.id, 1000)
        credit_ledger.redeem_credit(redeemed.credit_id)

        available = credit_ledger.available_credits([student.id])

        assert [c.credit_id for c in available] == [live.credit_id]

    def test_ordered_soonest_expiry_first_never_expiring_last(
        self, credit_ledger, student, clock,
    ):
        now = clock.now_utc()
        forever = credit_ledger.issue_credit(student.id, 1000)
        later = credit_ledger.issue_credit(student.id, 1000, expires_at=now + timedelta(days=30))
        sooner = credit_ledger.issue_credit(student.id, 1000, expires_at=now + timedelta(days=5))

        available = credit_ledger.available_credits([student.id])

        assert [c.credit_id for c in available] == [
            sooner.credit_id, later.credit_id, forever.credit_id,
        ]

    def test_expiring_within_window(self, credit_ledger, org, student, clock):
        now = clock.now_utc()
        soon = credit_ledger.issue_credit(student.id, 1000, expires_at=now + timedelta(days=2))
        credit_ledger.issue_credit(student.id, 1000, expires_at=now + timedelta(days=10))
        credit_ledger.issue_credit(student.id, 1000)

        expiring = credit_ledger.credits_expiring_within(org.id, timedelta(days=3))

        assert [c.credit_id for c in expiring] == [soon.credit_id]


class TestRedemption:

    def test_redeem_exactly_what_is_needed(self, credit_ledger, student):
        credit_ledger.issue_credit(student.id, 1000)
        credit_ledger.issue_credit(student.id, 1500)

        redemption = credit_ledger.redeem_credits([student.id], 2500)

        assert redemption.total_redeemed_minor == 2500
        assert len(redemption.consumed_credit_ids) == 2
        assert redemption.remainder_credit_ids == ()
        assert credit_ledger.available_credits([student.id]) == []

    def test_partial_redemption_leaves_remainder(self, credit_ledger, db_session, student):
        credit = credit_ledger.issue_credit(
            student.id, 5000, expires_at=datetime(2026, 6, 1, tzinfo=timezone.utc),
        )

        redemption = credit_ledger.redeem_credits([student.id], 3000)

        assert redemption.total_redeemed_minor == 3000
        assert redemption.consumed_credit_ids == (credit.credit_id,)
        (remainder,) = credit_ledger.available_credits([student.id])
        assert remainder.credit_id == redemption.remainder_credit_ids[0]
        assert remainder.credit_value_minor == 2000
        assert remainder.source_credit_id == credit.credit_id
        assert remainder.expires_at == credit.expires_at

        original = db_session.get(MakeUpCredit, credit.credit_id, populate_existing=True)
        assert original.redeemed_value_minor == 3000

    def test_never_redeems_more_than_needed(self, credit_ledger, student):
        credit_ledger.issue_credit(student.id, 4000)

        redemption = credit_ledger.redeem_credits([student.id], 100)

        assert redemption.total_redeemed_minor == 100

    def test_nothing_needed_redeems_nothing(self, credit_ledger, student):
        credit_ledger.issue_credit(student.id, 4000)

        assert credit_ledger.redeem_credits([student.id], 0).total_redeemed_minor == 0
        assert len(credit_ledger.available_credits([student.id])) == 1

    def test_redeem_credit_twice_raises(self, credit_ledger, student):
        credit = credit_ledger.issue_credit(student.id, 1000)
        credit_ledger.redeem_credit(credit.credit_id)

        with pytest.raises(CreditAlreadyRedeemedError):
            credit_ledger.redeem_credit(credit.credit_id)

    def test_stale_claim_reports_already_redeemed(self, credit_ledger, student, clock):
        credit = credit_ledger.issue_credit(student.id, 1000)
        stale = credit_ledger.available_credits([student.id])[0]
        credit_ledger.redeem_credit(credit.credit_id)

        claim = credit_ledger.claim_credit(stale, clock.now_utc())

        assert claim.outcome == CreditClaimOutcome.ALREADY_REDEEMED
        assert not claim.redeemed

    def test_redeemed_at_set_once(self, credit_ledger, db_session, student, clock):
        credit = credit_ledger.issue_credit(student.id, 1000)
        credit_ledger.redeem_credit(credit.credit_id)
        first = db_session.get(MakeUpCredit, credit.credit_id, populate_existing=True).redeemed_at

        clock.advance(3600)
        credit_ledger.claim_credit(credit.credit_id, clock.now_utc())

        row = db_session.execute(
            select(MakeUpCredit).where(MakeUpCredit.id == credit.credit_id)
            .execution_options(populate_existing=True)
        ).scalar_one()
        assert row.redeemed_at == first
