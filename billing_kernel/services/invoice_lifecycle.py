"""
InvoiceLifecycleService -- invoice status transitions.

Responsibility:
    Enforces the invoice state machine, voids invoices (re-issuing the
    credits they consumed) and sweeps sent invoices past their due date
    to ``overdue``.

Allowed transitions:
    draft   -> sent, void
    sent    -> paid, overdue, void
    overdue -> paid, sent, void
    paid, void: terminal

Settlement:
    A payment that covers the total settles the invoice from draft, sent
    or overdue (see can_settle).  This is the only route from draft
    straight to paid; transition_status keeps that edge closed.

Invariants enforced:
    - Credits are never un-redeemed.  Voiding an invoice issues a new
      credit for each redeemed portion, pointing back at the original.
    - Lessons of a void invoice become billable again, since the selector
      only treats lessons on non-void invoices as billed.
"""

from datetime import date
from uuid import UUID

from billing_kernel.domain.dtos import SYSTEM_ACTOR_ID, InvoiceDTO, InvoiceStatus
from billing_kernel.exceptions import InvalidStatusTransitionError, InvoiceNotFoundError
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.selectors.credit_selector import CreditSelector
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.credit_ledger import CreditLedger

logger = get_logger("services.invoice_lifecycle")

ALLOWED_TRANSITIONS: dict[InvoiceStatus, frozenset[InvoiceStatus]] = {
    InvoiceStatus.DRAFT: frozenset({InvoiceStatus.SENT, InvoiceStatus.VOID}),
    InvoiceStatus.SENT: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.OVERDUE, InvoiceStatus.VOID}
    ),
    InvoiceStatus.OVERDUE: frozenset(
        {InvoiceStatus.PAID, InvoiceStatus.SENT, InvoiceStatus.VOID}
    ),
    InvoiceStatus.PAID: frozenset(),
    InvoiceStatus.VOID: frozenset(),
}

SETTLEMENT_SOURCES: frozenset[InvoiceStatus] = frozenset(
    {InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE}
)


def can_transition(from_status: InvoiceStatus | str, to_status: InvoiceStatus | str) -> bool:
    return InvoiceStatus(to_status) in ALLOWED_TRANSITIONS[InvoiceStatus(from_status)]


def can_settle(status: InvoiceStatus | str) -> bool:
    """True when a covering payment may move an invoice in ``status`` to paid."""
    return InvoiceStatus(status) in SETTLEMENT_SOURCES


class InvoiceLifecycleService(BaseService):

    def _load(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def transition_status(
        self,
        invoice_id: UUID,
        to_status: InvoiceStatus | str,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> InvoiceDTO:
        invoice = self._load(invoice_id)
        target = InvoiceStatus(to_status)
        if not can_transition(invoice.status, target):
            raise InvalidStatusTransitionError(str(invoice_id), invoice.status, target.value)

        if target == InvoiceStatus.VOID:
            return self.void_invoice(invoice_id, actor_id=actor_id)

        previous = invoice.status
        invoice.status = target.value
        invoice.updated_by_id = actor_id
        self.session.flush()
        logger.info(
            "invoice_status_changed",
            extra={
                "invoice_id": str(invoice_id),
                "from_status": previous,
                "to_status": target.value,
            },
        )
        return InvoiceSelector(self.session).get(invoice_id)

    def void_invoice(self, invoice_id: UUID, actor_id: UUID = SYSTEM_ACTOR_ID) -> InvoiceDTO:
        invoice = self._load(invoice_id)
        if not can_transition(invoice.status, InvoiceStatus.VOID):
            raise InvalidStatusTransitionError(
                str(invoice_id), invoice.status, InvoiceStatus.VOID.value,
            )

        previous = invoice.status
        invoice.status = InvoiceStatus.VOID.value
        invoice.updated_by_id = actor_id
        self.session.flush()

        ledger = CreditLedger(self.session, self.clock)
        reissued = 0
        for credit in CreditSelector(self.session).redeemed_by_invoice(invoice_id):
            value = credit.redeemed_value_minor or credit.credit_value_minor
            if value <= 0:
                continue
            ledger.issue_credit(
                credit.student_id,
                value,
                origin_lesson_id=credit.issued_for_lesson_id,
                expires_at=credit.expires_at,
                actor_id=actor_id,
                notes=f"Restored from void invoice {invoice.invoice_number}",
                source_credit_id=credit.credit_id,
            )
            reissued += 1

        logger.info(
            "invoice_voided",
            extra={
                "invoice_id": str(invoice_id),
                "from_status": previous,
                "credits_restored": reissued,
            },
        )
        return InvoiceSelector(self.session).get(invoice_id)

    def mark_overdue(
        self,
        org_id: UUID,
        as_of: date | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> int:
        """Move sent invoices whose due date is before ``as_of`` to overdue."""
        as_of = as_of or self.clock.today()
        invoice_ids = InvoiceSelector(self.session).sent_due_before(org_id, as_of)
        for invoice_id in invoice_ids:
            self.transition_status(invoice_id, InvoiceStatus.OVERDUE, actor_id=actor_id)
        if invoice_ids:
            logger.info(
                "invoices_marked_overdue",
                extra={"org_id": str(org_id), "count": len(invoice_ids)},
            )
        return len(invoice_ids)
