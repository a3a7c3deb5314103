"""
CreditSelector -- read-only make-up credit queries.

A credit is available iff it is unredeemed and either never expires or
expires strictly after the reference time.
"""

from collections.abc import Collection
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import or_, select

from billing_kernel.domain.dtos import CreditDTO
from billing_kernel.models.credit import MakeUpCredit
from billing_kernel.selectors.base import BaseSelector


class CreditSelector(BaseSelector):

    def _available_clause(self, as_of: datetime):
        return (
            MakeUpCredit.redeemed_at.is_(None),
            or_(MakeUpCredit.expires_at.is_(None), MakeUpCredit.expires_at > as_of),
        )

    def available_credits(
        self,
        student_ids: Collection[UUID],
        as_of: datetime,
    ) -> list[CreditDTO]:
        """Soonest-expiring first; never-expiring credits last, then by issue time."""
        if not student_ids:
            return []
        credits = self.session.execute(
            select(MakeUpCredit)
            .where(
                MakeUpCredit.student_id.in_(list(student_ids)),
                *self._available_clause(as_of),
            )
            .order_by(
                MakeUpCredit.expires_at.is_(None),
                MakeUpCredit.expires_at,
                MakeUpCredit.issued_at,
                MakeUpCredit.id,
            )
            .execution_options(populate_existing=True)
        ).scalars()
        return [credit.to_dto() for credit in credits]

    def available_balance_minor(self, student_ids: Collection[UUID], as_of: datetime) -> int:
        return sum(c.credit_value_minor for c in self.available_credits(student_ids, as_of))

    def expiring_within(
        self,
        org_id: UUID,
        as_of: datetime,
        window: timedelta,
    ) -> list[CreditDTO]:
        credits = self.session.execute(
            select(MakeUpCredit)
            .where(
                MakeUpCredit.org_id == org_id,
                MakeUpCredit.redeemed_at.is_(None),
                MakeUpCredit.expires_at > as_of,
                MakeUpCredit.expires_at <= as_of + window,
            )
            .order_by(MakeUpCredit.expires_at, MakeUpCredit.id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [credit.to_dto() for credit in credits]

    def redeemed_by_invoice(self, invoice_id: UUID) -> list[CreditDTO]:
        credits = self.session.execute(
            select(MakeUpCredit)
            .where(MakeUpCredit.redeemed_invoice_id == invoice_id)
            .order_by(MakeUpCredit.redeemed_at, MakeUpCredit.id)
            .execution_options(populate_existing=True)
        ).scalars()
        return [credit.to_dto() for credit in credits]

    def get(self, credit_id: UUID) -> CreditDTO | None:
        credit = self.session.get(MakeUpCredit, credit_id, populate_existing=True)
        return credit.to_dto() if credit else None
