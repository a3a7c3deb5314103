"""
OrganisationSelector -- read access to an organisation's billing settings,
rate cards and terms.
"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from billing_kernel.domain.rates import RateCardInfo
from billing_kernel.exceptions import OrganisationNotFoundError, TermNotFoundError
from billing_kernel.models.organisation import Organisation, RateCard, Term
from billing_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class OrganisationInfo:
    org_id: UUID
    name: str
    currency_code: str
    vat_rate: Decimal  # effective rate: zero when VAT is disabled
    cancellation_notice_hours: int | None


@dataclass(frozen=True)
class TermInfo:
    term_id: UUID
    name: str
    start_date: date
    end_date: date


class OrganisationSelector(BaseSelector):

    def get(self, org_id: UUID) -> OrganisationInfo:
        org = self.session.get(Organisation, org_id)
        if org is None:
            raise OrganisationNotFoundError(str(org_id))
        return OrganisationInfo(
            org_id=org.id,
            name=org.name,
            currency_code=org.currency_code,
            vat_rate=org.effective_vat_rate,
            cancellation_notice_hours=org.cancellation_notice_hours,
        )

    def rate_cards(self, org_id: UUID) -> tuple[RateCardInfo, ...]:
        cards = self.session.execute(
            select(RateCard)
            .where(RateCard.org_id == org_id)
            .order_by(RateCard.duration_mins)
        ).scalars()
        return tuple(
            RateCardInfo(
                duration_mins=card.duration_mins,
                rate_amount_minor=card.rate_amount_minor,
                is_default=card.is_default,
            )
            for card in cards
        )

    def get_term(self, org_id: UUID, term_id: UUID) -> TermInfo:
        term = self.session.execute(
            select(Term).where(Term.id == term_id, Term.org_id == org_id)
        ).scalar_one_or_none()
        if term is None:
            raise TermNotFoundError(str(term_id))
        return TermInfo(
            term_id=term.id,
            name=term.name,
            start_date=term.start_date,
            end_date=term.end_date,
        )
