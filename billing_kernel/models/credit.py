"""
Module: billing_kernel.models.credit
Responsibility: ORM persistence for make-up credits.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - redeemed_at moves from NULL to a timestamp exactly once and never back.
      The only writer is CreditLedger.claim_credit's conditional UPDATE.
    - credit_value_minor > 0.
    - A credit is available iff redeemed_at IS NULL and
      (expires_at IS NULL or expires_at > now).
    - Remainder and re-issued credits point at their origin through
      source_credit_id.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from billing_kernel.domain.dtos import CreditDTO


class MakeUpCredit(TrackedBase):
    """Monetary credit held by a student, offsettable against an invoice."""

    __tablename__ = "make_up_credits"

    __table_args__ = (
        CheckConstraint("credit_value_minor > 0", name="ck_credit_value_positive"),
        Index("idx_credit_student_open", "student_id", "redeemed_at"),
        Index("idx_credit_org_expiry", "org_id", "expires_at"),
    )

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    student_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=False,
    )

    credit_value_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Cancelled lesson the credit compensates for
    issued_for_lesson_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lessons.id"),
        nullable=True,
    )

    issued_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    # NULL = never expires
    expires_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    redeemed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    redeemed_invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=True,
    )

    # Portion of the value applied to the invoice; the rest lives on in a
    # remainder credit.
    redeemed_value_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    source_credit_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("make_up_credits.id"),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    @property
    def is_redeemed(self) -> bool:
        return self.redeemed_at is not None

    def is_available(self, as_of: datetime) -> bool:
        if self.redeemed_at is not None:
            return False
        return self.expires_at is None or self.expires_at > as_of

    def to_dto(self) -> CreditDTO:
        from billing_kernel.domain.dtos import CreditDTO

        return CreditDTO(
            credit_id=self.id,
            org_id=self.org_id,
            student_id=self.student_id,
            credit_value_minor=self.credit_value_minor,
            issued_for_lesson_id=self.issued_for_lesson_id,
            issued_at=self.issued_at,
            expires_at=self.expires_at,
            redeemed_at=self.redeemed_at,
            redeemed_invoice_id=self.redeemed_invoice_id,
            redeemed_value_minor=self.redeemed_value_minor,
            source_credit_id=self.source_credit_id,
        )

    def __repr__(self) -> str:
        state = "redeemed" if self.is_redeemed else "open"
        return f"<MakeUpCredit {self.credit_value_minor} {state}>"
