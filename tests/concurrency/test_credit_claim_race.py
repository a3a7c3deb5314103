"""
Compare-and-set credit claims.

Two redemptions working from the same snapshot of available credits must
never both consume a credit.  The loser sees ALREADY_REDEEMED and, in the
greedy path, moves on to the next credit.
"""

from datetime import timedelta

import pytest

from billing_kernel.domain.dtos import CreditClaimOutcome
from billing_kernel.exceptions import CreditAlreadyRedeemedError
from billing_kernel.selectors.credit_selector import CreditSelector


@pytest.fixture
def student(org, make_student):
    return make_student(org, "Race", "Condition", email="race@example.com")


class TestCompareAndSet:

    def test_second_claim_from_same_snapshot_loses(self, credit_ledger, student, clock):
        credit_ledger.issue_credit(student.id, 3000)
        (snapshot,) = credit_ledger.available_credits([student.id])

        first = credit_ledger.claim_credit(snapshot, clock.now_utc())
        second = credit_ledger.claim_credit(snapshot, clock.now_utc())

        assert first.outcome == CreditClaimOutcome.REDEEMED
        assert first.redeemed_value_minor == 3000
        assert second.outcome == CreditClaimOutcome.ALREADY_REDEEMED
        assert second.redeemed_value_minor == 0
        assert second.remainder_credit_id is None

    def test_losing_partial_claim_issues_no_remainder(self, credit_ledger, student, clock):
        credit_ledger.issue_credit(student.id, 5000)
        (snapshot,) = credit_ledger.available_credits([student.id])
        credit_ledger.claim_credit(snapshot, clock.now_utc(), amount_minor=1000)

        lost = credit_ledger.claim_credit(snapshot, clock.now_utc(), amount_minor=1000)

        assert not lost.redeemed
        (remainder,) = credit_ledger.available_credits([student.id])
        assert remainder.credit_value_minor == 4000

    def test_explicit_redeem_raises_when_lost(self, credit_ledger, student):
        credit = credit_ledger.issue_credit(student.id, 3000)
        credit_ledger.redeem_credit(credit.credit_id)

        with pytest.raises(CreditAlreadyRedeemedError) as exc_info:
            credit_ledger.redeem_credit(credit.credit_id)

        assert exc_info.value.credit_id == str(credit.credit_id)


class TestGreedyRedemptionSkipsLostClaims:

    def test_moves_on_to_next_credit(self, credit_ledger, student, clock, monkeypatch):
        now = clock.now_utc()
        contested = credit_ledger.issue_credit(student.id, 2000, expires_at=now + timedelta(days=1))
        spare = credit_ledger.issue_credit(student.id, 2000, expires_at=now + timedelta(days=9))
        stale_view = credit_ledger.available_credits([student.id])

        # A concurrent invoice takes the soonest-expiring credit after this
        # redemption has already read the list of available credits.
        credit_ledger.redeem_credit(contested.credit_id)
        monkeypatch.setattr(
            CreditSelector, "available_credits", lambda self, ids, as_of: stale_view,
        )

        redemption = credit_ledger.redeem_credits([student.id], 2000)

        assert redemption.lost_claims == 1
        assert redemption.consumed_credit_ids == (spare.credit_id,)
        assert redemption.total_redeemed_minor == 2000

    def test_never_exceeds_what_was_won(self, credit_ledger, student, monkeypatch):
        only = credit_ledger.issue_credit(student.id, 2000)
        stale_view = credit_ledger.available_credits([student.id])
        credit_ledger.redeem_credit(only.credit_id)
        monkeypatch.setattr(
            CreditSelector, "available_credits", lambda self, ids, as_of: stale_view,
        )

        redemption = credit_ledger.redeem_credits([student.id], 2000)

        assert redemption.total_redeemed_minor == 0
        assert redemption.consumed_credit_ids == ()

    def test_lost_claim_logged(self, credit_ledger, student, clock, captured_logs):
        credit_ledger.issue_credit(student.id, 1000)
        (snapshot,) = credit_ledger.available_credits([student.id])
        credit_ledger.claim_credit(snapshot, clock.now_utc())

        credit_ledger.claim_credit(snapshot, clock.now_utc())

        (record,) = [r for r in captured_logs() if r["message"] == "credit_claim_lost"]
        assert record["credit_id"] == str(snapshot.credit_id)
