"""
Module: billing_kernel.models.payment
Responsibility: ORM persistence for payments received against invoices.
Architecture position: Kernel > Models.  May import from db/base.py only.

Invariants enforced:
    - amount_minor >= 0.
    - At most one payment per (invoice_id, provider_reference); payments
      without a reference are not deduplicated.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import BigInteger, CheckConstraint, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UTCDateTime, UUIDString


class PaymentMethod(str, Enum):
    CASH = "cash"
    CARD = "card"
    BANK_TRANSFER = "bank_transfer"
    OTHER = "other"


class Payment(TrackedBase):
    """A payment applied to one invoice."""

    __tablename__ = "payments"

    __table_args__ = (
        UniqueConstraint(
            "invoice_id", "provider_reference", name="uq_payment_invoice_reference",
        ),
        CheckConstraint("amount_minor >= 0", name="ck_payment_amount_non_negative"),
        Index("idx_payment_invoice", "invoice_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=False,
    )

    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    method: Mapped[str] = mapped_column(String(20), nullable=False)

    provider_reference: Mapped[str | None] = mapped_column(String(200), nullable=True)

    paid_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)

    def __repr__(self) -> str:
        return f"<Payment {self.amount_minor} via {self.method}>"
