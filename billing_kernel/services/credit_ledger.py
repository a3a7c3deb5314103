"""
CreditLedger -- make-up credit issuance, eligibility and redemption.

Responsibility:
    Issues credits (directly or for a sufficiently-noticed cancellation),
    lists available credits and redeems them against invoices.

Architecture position:
    Kernel > Services.  Writes through the caller's session; never commits.
    Called by InvoiceAssembler inside each payer's savepoint and by
    InvoiceLifecycleService when an invoice is voided.

Invariants enforced:
    - redeemed_at moves from NULL to a timestamp exactly once.  Every claim
      is a conditional ``UPDATE ... WHERE redeemed_at IS NULL``; the row
      count decides who won.
    - A redemption never takes more than it needs.  When a credit is
      larger than the remaining need it is redeemed for the needed part
      and a remainder credit carries the rest, so no value is lost.
    - A lost claim during greedy redemption is skipped and the next credit
      is tried; only the explicit single-credit path raises.

Failure modes:
    - InvalidAmountError: non-positive credit value.
    - StudentNotFoundError / LessonNotFoundError: unknown references.
    - CreditAlreadyRedeemedError: redeem_credit() lost the claim.
"""

from collections.abc import Collection
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import update
from sqlalchemy.orm import Session

from billing_kernel.domain.calculations import check_cancellation_eligibility
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import (
    SYSTEM_ACTOR_ID,
    CancellationEligibility,
    CreditClaim,
    CreditClaimOutcome,
    CreditDTO,
    CreditRedemption,
)
from billing_kernel.exceptions import (
    CreditAlreadyRedeemedError,
    InvalidAmountError,
    LessonNotFoundError,
    StudentNotFoundError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.credit import MakeUpCredit
from billing_kernel.models.lesson import Lesson
from billing_kernel.models.organisation import Organisation
from billing_kernel.models.people import Student
from billing_kernel.selectors.credit_selector import CreditSelector
from billing_kernel.services.base import BaseService

logger = get_logger("services.credit_ledger")


class CreditLedger(BaseService):
    """
    Make-up credit ledger for one session.

    Args:
        default_notice_hours: Notice required when the organisation has no
            cancellation_notice_hours of its own.
        credit_expiry_days: Lifetime of credits issued for cancellations;
            None issues never-expiring credits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        default_notice_hours: int = 24,
        credit_expiry_days: int | None = 90,
    ):
        super().__init__(session, clock)
        self.default_notice_hours = default_notice_hours
        self.credit_expiry_days = credit_expiry_days
        self._selector = CreditSelector(session)

    # -------------------------------------------------------------------------
    # Issuance
    # -------------------------------------------------------------------------

    def issue_credit(
        self,
        student_id: UUID,
        value_minor: int,
        origin_lesson_id: UUID | None = None,
        expires_at: datetime | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        notes: str | None = None,
        source_credit_id: UUID | None = None,
    ) -> CreditDTO:
        if value_minor is None or value_minor <= 0:
            raise InvalidAmountError("credit_value_minor", value_minor, "must be > 0")

        student = self.session.get(Student, student_id)
        if student is None:
            raise StudentNotFoundError(str(student_id))

        credit = MakeUpCredit(
            org_id=student.org_id,
            student_id=student_id,
            credit_value_minor=value_minor,
            issued_for_lesson_id=origin_lesson_id,
            issued_at=self.clock.now_utc(),
            expires_at=expires_at,
            source_credit_id=source_credit_id,
            notes=notes,
            created_by_id=actor_id,
        )
        self.session.add(credit)
        self.session.flush()

        logger.info(
            "credit_issued",
            extra={
                "credit_id": str(credit.id),
                "student_id": str(student_id),
                "value_minor": value_minor,
                "expires_at": expires_at,
                "source_credit_id": str(source_credit_id) if source_credit_id else None,
            },
        )
        return credit.to_dto()

    def check_cancellation_eligibility(
        self,
        lesson_start_at: datetime,
        cancelled_at: datetime,
        required_notice_hours: int,
    ) -> CancellationEligibility:
        return check_cancellation_eligibility(
            lesson_start_at, cancelled_at, required_notice_hours,
        )

    def issue_credit_for_cancellation(
        self,
        lesson_id: UUID,
        student_id: UUID,
        cancelled_at: datetime,
        value_minor: int,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> tuple[CreditDTO | None, CancellationEligibility]:
        """
        Issue a credit for a student cancellation if enough notice was given.

        Returns the credit (None when ineligible) with the eligibility
        details so the caller can explain a refusal.
        """
        lesson = self.session.get(Lesson, lesson_id)
        if lesson is None:
            raise LessonNotFoundError(str(lesson_id))

        org = self.session.get(Organisation, lesson.org_id)
        required = self.default_notice_hours
        if org is not None and org.cancellation_notice_hours is not None:
            required = org.cancellation_notice_hours

        eligibility = check_cancellation_eligibility(lesson.start_at, cancelled_at, required)
        if not eligibility.eligible:
            logger.info(
                "cancellation_credit_refused",
                extra={
                    "lesson_id": str(lesson_id),
                    "student_id": str(student_id),
                    "hours_notice": eligibility.hours_notice,
                    "required_hours": required,
                },
            )
            return None, eligibility

        expires_at = None
        if self.credit_expiry_days is not None:
            expires_at = self.clock.now_utc() + timedelta(days=self.credit_expiry_days)

        credit = self.issue_credit(
            student_id,
            value_minor,
            origin_lesson_id=lesson_id,
            expires_at=expires_at,
            actor_id=actor_id,
            notes=f"Cancelled with {eligibility.hours_notice}h notice",
        )
        return credit, eligibility

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def available_credits(
        self,
        student_ids: Collection[UUID],
        as_of: datetime | None = None,
    ) -> list[CreditDTO]:
        return self._selector.available_credits(student_ids, as_of or self.clock.now_utc())

    def credits_expiring_within(
        self,
        org_id: UUID,
        window: timedelta,
        as_of: datetime | None = None,
    ) -> list[CreditDTO]:
        return self._selector.expiring_within(org_id, as_of or self.clock.now_utc(), window)

    # -------------------------------------------------------------------------
    # Redemption
    # -------------------------------------------------------------------------

    def claim_credit(
        self,
        credit: CreditDTO | UUID,
        as_of: datetime,
        amount_minor: int | None = None,
        invoice_id: UUID | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CreditClaim:
        """
        Compare-and-set claim of one credit.

        Redeems ``amount_minor`` (default: the full value) of the credit.
        A larger credit leaves a remainder credit behind.  Losing the race
        to another redemption is reported as ALREADY_REDEEMED.
        """
        if isinstance(credit, UUID):
            loaded = self._selector.get(credit)
            if loaded is None:
                raise CreditAlreadyRedeemedError(str(credit))
            credit = loaded

        consumed = credit.credit_value_minor if amount_minor is None else amount_minor
        consumed = max(0, min(consumed, credit.credit_value_minor))

        result = self.session.execute(
            update(MakeUpCredit)
            .where(
                MakeUpCredit.id == credit.credit_id,
                MakeUpCredit.redeemed_at.is_(None),
            )
            .values(
                redeemed_at=as_of,
                redeemed_invoice_id=invoice_id,
                redeemed_value_minor=consumed,
                updated_by_id=actor_id,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            logger.info(
                "credit_claim_lost",
                extra={"credit_id": str(credit.credit_id)},
            )
            return CreditClaim(
                credit_id=credit.credit_id,
                outcome=CreditClaimOutcome.ALREADY_REDEEMED,
            )

        remainder_id = None
        leftover = credit.credit_value_minor - consumed
        if leftover > 0:
            remainder = self.issue_credit(
                credit.student_id,
                leftover,
                origin_lesson_id=credit.issued_for_lesson_id,
                expires_at=credit.expires_at,
                actor_id=actor_id,
                notes="Remainder of partially redeemed credit",
                source_credit_id=credit.credit_id,
            )
            remainder_id = remainder.credit_id

        return CreditClaim(
            credit_id=credit.credit_id,
            outcome=CreditClaimOutcome.REDEEMED,
            redeemed_value_minor=consumed,
            remainder_credit_id=remainder_id,
        )

    def redeem_credit(
        self,
        credit_id: UUID,
        invoice_id: UUID | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CreditClaim:
        """Redeem one specific credit in full; raises if it is already taken."""
        credit = self._selector.get(credit_id)
        if credit is None or credit.redeemed_at is not None:
            raise CreditAlreadyRedeemedError(str(credit_id))
        claim = self.claim_credit(
            credit, self.clock.now_utc(), invoice_id=invoice_id, actor_id=actor_id,
        )
        if not claim.redeemed:
            raise CreditAlreadyRedeemedError(str(credit_id))
        return claim

    def redeem_credits(
        self,
        student_ids: Collection[UUID],
        amount_needed_minor: int,
        as_of: datetime | None = None,
        invoice_id: UUID | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CreditRedemption:
        """
        Greedily redeem available credits, soonest-expiring first, up to
        ``amount_needed_minor``.

        Returns the amount actually redeemed (never more than needed) with
        the consumed and remainder credit ids.
        """
        if amount_needed_minor <= 0 or not student_ids:
            return CreditRedemption()

        as_of = as_of or self.clock.now_utc()
        remaining = amount_needed_minor
        consumed_ids: list[UUID] = []
        remainder_ids: list[UUID] = []
        lost = 0

        for credit in self._selector.available_credits(student_ids, as_of):
            if remaining <= 0:
                break
            claim = self.claim_credit(
                credit,
                as_of,
                amount_minor=min(remaining, credit.credit_value_minor),
                invoice_id=invoice_id,
                actor_id=actor_id,
            )
            if not claim.redeemed:
                lost += 1
                continue
            remaining -= claim.redeemed_value_minor
            consumed_ids.append(claim.credit_id)
            if claim.remainder_credit_id is not None:
                remainder_ids.append(claim.remainder_credit_id)

        redemption = CreditRedemption(
            total_redeemed_minor=amount_needed_minor - remaining,
            consumed_credit_ids=tuple(consumed_ids),
            remainder_credit_ids=tuple(remainder_ids),
            lost_claims=lost,
        )
        if consumed_ids:
            logger.info(
                "credits_redeemed",
                extra={
                    "invoice_id": str(invoice_id) if invoice_id else None,
                    "redeemed_minor": redemption.total_redeemed_minor,
                    "credit_count": len(consumed_ids),
                    "remainder_count": len(remainder_ids),
                },
            )
        return redemption
