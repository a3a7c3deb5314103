"""
InvoiceAssembler -- turns one payer's lessons into a persisted invoice.

Responsibility:
    Prices each lesson, computes subtotal and tax, offsets available
    make-up credits and writes the invoice with its line items.

Architecture position:
    Kernel > Services.  Called by the billing run executor once per payer
    group, inside that payer's SAVEPOINT: the invoice, its lines (the
    billed-lesson markers), the invoice number and the credit redemption
    commit or roll back together.

Invariants enforced:
    - One line per lesson with amount = quantity * unit price.
    - tax = round_half_up(subtotal * vat_rate / 100).
    - total = max(0, subtotal + tax - credit_offset), and the credit offset
      never exceeds subtotal + tax.
    - At most one invoice per (billing run, payer).

Failure modes:
    - PayerBillingError: anything that prevents invoicing this payer
      (missing e-mail, unpriceable lesson).  Retryable.
    - DuplicateRunInvoiceError: the run already invoiced this payer.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy.orm import Session

from billing_kernel.domain.calculations import calculate_tax, calculate_total, to_rate
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import (
    SYSTEM_ACTOR_ID,
    AssembledInvoice,
    InvoiceStatus,
    LineItemSpec,
    PayerGroup,
    PayerType,
)
from billing_kernel.domain.rates import RateResolver
from billing_kernel.exceptions import (
    BillingKernelError,
    DuplicateRunInvoiceError,
    PayerBillingError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice, InvoiceItem
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.credit_ledger import CreditLedger
from billing_kernel.services.sequence_service import SequenceService

logger = get_logger("services.invoice_assembler")


def build_line_items(group: PayerGroup, rate_resolver: RateResolver) -> list[LineItemSpec]:
    """One line per deduplicated lesson, in the group's lesson order."""
    lines = []
    for lesson in group.lessons:
        unit_price = rate_resolver(lesson.duration_minutes)
        lines.append(
            LineItemSpec(
                description=(
                    f"{lesson.lesson_title} - {lesson.student_name} "
                    f"({lesson.start_at.date().isoformat()})"
                ),
                unit_price_minor=unit_price,
                quantity=1,
                linked_lesson_id=lesson.lesson_id,
                student_id=lesson.student_id,
            )
        )
    return lines


class InvoiceAssembler(BaseService):
    """
    Builds and persists invoices for payer groups.

    Args:
        credit_ledger: Ledger used to offset credits.  Must share the session.
        invoice_number_prefix: e.g. "INV" -> "INV-00001".
        invoice_due_days: Days between issue and due date.
        require_payer_email: Refuse to invoice payers without an e-mail.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock,
        credit_ledger: CreditLedger,
        sequence_service: SequenceService | None = None,
        invoice_number_prefix: str = "INV",
        invoice_due_days: int = 14,
        require_payer_email: bool = True,
    ):
        super().__init__(session, clock)
        self.credit_ledger = credit_ledger
        self.sequence_service = sequence_service or SequenceService(session)
        self.invoice_number_prefix = invoice_number_prefix
        self.invoice_due_days = invoice_due_days
        self.require_payer_email = require_payer_email
        self._invoices = InvoiceSelector(session)

    def assemble(
        self,
        group: PayerGroup,
        rate_resolver: RateResolver,
        vat_rate: Decimal | int | str,
        *,
        org_id: UUID,
        currency_code: str,
        billing_run_id: UUID | None = None,
        term_id: UUID | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> AssembledInvoice:
        payer = group.payer

        if billing_run_id is not None:
            existing = self._invoices.find_for_run_payer(billing_run_id, group.key)
            if existing is not None:
                raise DuplicateRunInvoiceError(
                    str(billing_run_id), group.key, str(existing.invoice_id),
                )

        try:
            if self.require_payer_email and not payer.email:
                raise PayerBillingError(
                    payer_id=str(payer.payer_id),
                    payer_name=payer.name,
                    payer_email=payer.email,
                    reason="Payer has no email address",
                    payer_type=payer.payer_type.value,
                )
            lines = build_line_items(group, rate_resolver)
        except PayerBillingError:
            raise
        except BillingKernelError as exc:
            raise PayerBillingError(
                payer_id=str(payer.payer_id),
                payer_name=payer.name,
                payer_email=payer.email,
                reason=str(exc),
                payer_type=payer.payer_type.value,
            ) from exc

        rate = to_rate(vat_rate)
        subtotal = sum(line.amount_minor for line in lines)
        tax = calculate_tax(subtotal, rate)
        issue_date = self.clock.today()

        invoice = Invoice(
            org_id=org_id,
            billing_run_id=billing_run_id,
            invoice_number=self.sequence_service.next_invoice_number(
                org_id, self.invoice_number_prefix,
            ),
            payer_key=group.key,
            payer_guardian_id=(
                payer.payer_id if payer.payer_type == PayerType.GUARDIAN else None
            ),
            payer_student_id=(
                payer.payer_id if payer.payer_type == PayerType.STUDENT else None
            ),
            currency_code=currency_code,
            status=InvoiceStatus.DRAFT.value,
            subtotal_minor=subtotal,
            tax_minor=tax,
            credit_offset_minor=0,
            total_minor=calculate_total(subtotal, tax, 0),
            vat_rate=rate,
            issue_date=issue_date,
            due_date=issue_date + timedelta(days=self.invoice_due_days),
            term_id=term_id,
            created_by_id=actor_id,
        )
        for position, line in enumerate(lines, start=1):
            invoice.items.append(
                InvoiceItem(
                    position=position,
                    description=line.description,
                    quantity=line.quantity,
                    unit_price_minor=line.unit_price_minor,
                    amount_minor=line.amount_minor,
                    linked_lesson_id=line.linked_lesson_id,
                    student_id=line.student_id,
                    created_by_id=actor_id,
                )
            )
        self.session.add(invoice)
        # Credits reference the invoice row, so it must exist first.
        self.session.flush()

        redemption = self.credit_ledger.redeem_credits(
            group.student_ids,
            subtotal + tax,
            as_of=self.clock.now_utc(),
            invoice_id=invoice.id,
            actor_id=actor_id,
        )
        invoice.credit_offset_minor = redemption.total_redeemed_minor
        invoice.total_minor = calculate_total(subtotal, tax, redemption.total_redeemed_minor)
        self.session.flush()

        logger.info(
            "payer_invoice_created",
            extra={
                "invoice_id": str(invoice.id),
                "invoice_number": invoice.invoice_number,
                "payer_key": group.key,
                "line_count": len(lines),
                "subtotal_minor": subtotal,
                "tax_minor": tax,
                "credit_offset_minor": invoice.credit_offset_minor,
                "total_minor": invoice.total_minor,
            },
        )

        return AssembledInvoice(
            invoice_id=invoice.id,
            invoice_number=invoice.invoice_number,
            payer_key=group.key,
            line_count=len(lines),
            subtotal_minor=subtotal,
            tax_minor=tax,
            credit_offset_minor=invoice.credit_offset_minor,
            total_minor=invoice.total_minor,
            consumed_credit_ids=redemption.consumed_credit_ids,
        )
