"""
Module: billing_kernel.models.organisation
Responsibility: ORM persistence for the organisation (tenant) and its
    billing reference data -- rate cards and terms.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - vat_rate is a percentage (0-100) and only applies when vat_enabled.
    - At most one rate card per (org, duration_mins).
    - Term start_date <= end_date (enforced by the caller on creation).
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    Boolean,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, validates

from billing_kernel.db.base import Base, UUIDString
from billing_kernel.db.types import validate_currency


class Organisation(Base):
    """
    A music school.  Every billable record is scoped to exactly one org.

    Guarantees:
        - effective_vat_rate is zero when VAT is disabled.
    """

    __tablename__ = "organisations"

    name: Mapped[str] = mapped_column(String(200), nullable=False)

    currency_code: Mapped[str] = mapped_column(
        String(3),
        default="GBP",
        nullable=False,
    )

    vat_enabled: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    # Percentage, e.g. 20.00
    vat_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False,
    )

    # Hours of notice needed for a cancellation to earn a make-up credit.
    # None falls back to the configured default.
    cancellation_notice_hours: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    @validates("currency_code")
    def _normalise_currency(self, key: str, value: str) -> str:
        return validate_currency(value)

    @property
    def effective_vat_rate(self) -> Decimal:
        if not self.vat_enabled:
            return Decimal("0")
        return Decimal(self.vat_rate)

    def __repr__(self) -> str:
        return f"<Organisation {self.name}>"


class RateCard(Base):
    """Price per lesson for a given lesson duration."""

    __tablename__ = "rate_cards"

    __table_args__ = (
        UniqueConstraint("org_id", "duration_mins", name="uq_rate_card_duration"),
        Index("idx_rate_card_org", "org_id"),
    )

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    duration_mins: Mapped[int] = mapped_column(Integer, nullable=False)

    rate_amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    is_default: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<RateCard {self.duration_mins}min = {self.rate_amount_minor}>"


class Term(Base):
    """A teaching term; upfront billing runs may target a whole term."""

    __tablename__ = "terms"

    __table_args__ = (Index("idx_term_org_dates", "org_id", "start_date"),)

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Inclusive
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    def __repr__(self) -> str:
        return f"<Term {self.name}: {self.start_date}..{self.end_date}>"
