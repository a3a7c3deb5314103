"""
InvoiceSelector -- read-only invoice queries.

Paid and outstanding amounts are always derived from payment rows; the
invoice carries no stored balance.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from billing_kernel.domain.dtos import InvoiceDTO, InvoiceStatus
from billing_kernel.exceptions import InvoiceNotFoundError
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.payment import Payment
from billing_kernel.selectors.base import BaseSelector


class InvoiceSelector(BaseSelector):

    def paid_minor(self, invoice_id: UUID) -> int:
        total = self.session.execute(
            select(func.coalesce(func.sum(Payment.amount_minor), 0))
            .where(Payment.invoice_id == invoice_id)
        ).scalar_one()
        return int(total)

    def outstanding_minor(self, invoice_id: UUID) -> int:
        invoice = self._load(invoice_id)
        return max(0, invoice.total_minor - self.paid_minor(invoice_id))

    def get(self, invoice_id: UUID) -> InvoiceDTO:
        invoice = self._load(invoice_id)
        return invoice.to_dto(paid_minor=self.paid_minor(invoice_id))

    def find_for_run_payer(self, billing_run_id: UUID, payer_key: str) -> InvoiceDTO | None:
        invoice = self.session.execute(
            select(Invoice).where(
                Invoice.billing_run_id == billing_run_id,
                Invoice.payer_key == payer_key,
            )
        ).scalar_one_or_none()
        if invoice is None:
            return None
        return invoice.to_dto(paid_minor=self.paid_minor(invoice.id))

    def list_for_run(self, billing_run_id: UUID) -> list[InvoiceDTO]:
        invoices = self.session.execute(
            select(Invoice)
            .where(Invoice.billing_run_id == billing_run_id)
            .order_by(Invoice.invoice_number)
        ).scalars()
        return [inv.to_dto(paid_minor=self.paid_minor(inv.id)) for inv in invoices]

    def sent_due_before(self, org_id: UUID, as_of: date) -> list[UUID]:
        """Ids of sent invoices whose due date has passed."""
        return list(
            self.session.execute(
                select(Invoice.id).where(
                    Invoice.org_id == org_id,
                    Invoice.status == InvoiceStatus.SENT.value,
                    Invoice.due_date < as_of,
                )
            ).scalars()
        )

    def _load(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice
