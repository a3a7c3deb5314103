"""
Module: billing_kernel.models.invoice
Responsibility: ORM persistence for invoices and their line items.
Architecture position: Kernel > Models.  May import from db/base.py and
    the pure domain DTO module.

Invariants enforced:
    - total_minor = max(0, subtotal_minor + tax_minor - credit_offset_minor),
      computed by the assembler and never recomputed from lines.
    - Exactly one of payer_guardian_id / payer_student_id is set.
    - One invoice per (billing_run_id, payer_key); manual invoices carry a
      NULL billing_run_id and are not constrained.
    - invoice_number is unique per organisation.
    - A line item with linked_lesson_id marks that lesson billed while its
      invoice is not void.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from billing_kernel.db.base import TrackedBase, UUIDString
from billing_kernel.domain.dtos import InvoiceDTO, InvoiceStatus, PayerType


class Invoice(TrackedBase):
    """
    An invoice addressed to a single payer.

    Billing-run invoices are created by the InvoiceAssembler inside the
    payer's savepoint; payments and status changes arrive later through
    PaymentRecorder and InvoiceLifecycleService.
    """

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("billing_run_id", "payer_key", name="uq_invoice_run_payer"),
        UniqueConstraint("org_id", "invoice_number", name="uq_invoice_number"),
        CheckConstraint(
            "(payer_guardian_id IS NULL) <> (payer_student_id IS NULL)",
            name="ck_invoice_single_payer",
        ),
        CheckConstraint("total_minor >= 0", name="ck_invoice_total_non_negative"),
        Index("idx_invoice_org_status", "org_id", "status"),
        Index("idx_invoice_run", "billing_run_id"),
    )

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )

    # Billing runs live in billing_batch; no FK so the kernel schema
    # stands on its own.
    billing_run_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    invoice_number: Mapped[str] = mapped_column(String(30), nullable=False)

    # "<payer_type>:<payer_id>"
    payer_key: Mapped[str] = mapped_column(String(60), nullable=False)

    payer_guardian_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("guardians.id"),
        nullable=True,
    )

    payer_student_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=True,
    )

    currency_code: Mapped[str] = mapped_column(String(3), nullable=False)

    status: Mapped[str] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT.value,
        nullable=False,
    )

    # Amounts in minor units
    subtotal_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    tax_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)
    credit_offset_minor: Mapped[int] = mapped_column(
        BigInteger,
        default=0,
        nullable=False,
    )
    total_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # Percentage applied when the invoice was assembled
    vat_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2),
        default=Decimal("0"),
        nullable=False,
    )

    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    term_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("terms.id"),
        nullable=True,
    )

    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        order_by="InvoiceItem.position",
        cascade="all, delete-orphan",
    )

    @property
    def payer_type(self) -> PayerType:
        if self.payer_guardian_id is not None:
            return PayerType.GUARDIAN
        return PayerType.STUDENT

    @property
    def payer_id(self) -> UUID:
        return self.payer_guardian_id or self.payer_student_id

    @property
    def is_void(self) -> bool:
        return self.status == InvoiceStatus.VOID.value

    def to_dto(self, paid_minor: int = 0) -> InvoiceDTO:
        return InvoiceDTO(
            invoice_id=self.id,
            org_id=self.org_id,
            billing_run_id=self.billing_run_id,
            invoice_number=self.invoice_number,
            payer_key=self.payer_key,
            status=InvoiceStatus(self.status),
            currency_code=self.currency_code,
            subtotal_minor=self.subtotal_minor,
            tax_minor=self.tax_minor,
            credit_offset_minor=self.credit_offset_minor,
            total_minor=self.total_minor,
            paid_minor=paid_minor,
            outstanding_minor=max(0, self.total_minor - paid_minor),
            issue_date=self.issue_date,
            due_date=self.due_date,
            linked_lesson_ids=tuple(
                item.linked_lesson_id
                for item in self.items
                if item.linked_lesson_id is not None
            ),
        )

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.status} {self.total_minor}>"


class InvoiceItem(TrackedBase):
    """One charge on an invoice; billing-run lines link to the billed lesson."""

    __tablename__ = "invoice_items"

    __table_args__ = (
        Index("idx_invoice_item_invoice", "invoice_id"),
        Index("idx_invoice_item_lesson", "linked_lesson_id"),
    )

    invoice_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(Integer, nullable=False)

    description: Mapped[str] = mapped_column(String(300), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, default=1, nullable=False)

    unit_price_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    # quantity * unit_price_minor
    amount_minor: Mapped[int] = mapped_column(BigInteger, nullable=False)

    linked_lesson_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("lessons.id"),
        nullable=True,
    )

    student_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("students.id"),
        nullable=True,
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    def __repr__(self) -> str:
        return f"<InvoiceItem {self.description}: {self.amount_minor}>"
