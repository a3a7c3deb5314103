"""
PaymentRecorder -- applies payments to invoices.

Responsibility:
    Records payments, derives paid / outstanding / overpaid amounts from
    the payment rows and moves fully-paid invoices to ``paid``.  Also
    drives the external payment gateway to collect an outstanding balance.
    Which statuses a payment may settle is decided by
    ``invoice_lifecycle.can_settle``.

Architecture position:
    Kernel > Services.  Flush-only.

Invariants enforced:
    - Payment amounts are >= 0.  Zero is accepted (e.g. a fully-credited
      invoice acknowledged by the payer).
    - Idempotent per (invoice, provider_reference): repeating a referenced
      payment returns the existing row and writes nothing.
    - outstanding = max(0, total - paid).  Overpayment is accepted and
      reported; asking the user to confirm it is not the kernel's job.
    - Void invoices accept no payments.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from billing_kernel.domain.dtos import (
    SYSTEM_ACTOR_ID,
    InvoiceStatus,
    PayerRef,
    PayerType,
    PaymentRecordResult,
)
from billing_kernel.domain.gateway import ChargeOutcome, ChargeResult, PaymentGateway
from billing_kernel.exceptions import (
    InvalidAmountError,
    InvalidPaymentMethodError,
    InvoiceNotFoundError,
    InvoiceVoidError,
)
from billing_kernel.logging_config import get_logger
from billing_kernel.models.invoice import Invoice
from billing_kernel.models.payment import Payment, PaymentMethod
from billing_kernel.models.people import Guardian, Student
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.services.base import BaseService
from billing_kernel.services.invoice_lifecycle import can_settle

logger = get_logger("services.payment_recorder")


@dataclass(frozen=True)
class CollectionResult:
    charge: ChargeResult
    payment: PaymentRecordResult | None = None


def parse_payment_method(method: PaymentMethod | str) -> PaymentMethod:
    try:
        return PaymentMethod(method)
    except ValueError:
        raise InvalidPaymentMethodError(str(method)) from None


class PaymentRecorder(BaseService):

    def _load_invoice(self, invoice_id: UUID) -> Invoice:
        invoice = self.session.get(Invoice, invoice_id)
        if invoice is None:
            raise InvoiceNotFoundError(str(invoice_id))
        return invoice

    def _find_by_reference(self, invoice_id: UUID, provider_reference: str) -> Payment | None:
        return self.session.execute(
            select(Payment).where(
                Payment.invoice_id == invoice_id,
                Payment.provider_reference == provider_reference,
            )
        ).scalar_one_or_none()

    def record_payment(
        self,
        invoice_id: UUID,
        amount_minor: int,
        method: PaymentMethod | str,
        provider_reference: str | None = None,
        actor_id: UUID = SYSTEM_ACTOR_ID,
        paid_at: datetime | None = None,
    ) -> PaymentRecordResult:
        """
        Record a payment and settle the invoice when fully paid.

        Raises:
            InvalidAmountError: amount_minor < 0.
            InvalidPaymentMethodError: unknown method.
            InvoiceNotFoundError / InvoiceVoidError.
        """
        if amount_minor is None or amount_minor < 0:
            raise InvalidAmountError("amount_minor", amount_minor, "must be >= 0")
        payment_method = parse_payment_method(method)

        invoice = self._load_invoice(invoice_id)
        if invoice.is_void:
            raise InvoiceVoidError(str(invoice_id), "record a payment on")

        if provider_reference:
            existing = self._find_by_reference(invoice_id, provider_reference)
            if existing is not None:
                logger.info(
                    "payment_duplicate_ignored",
                    extra={
                        "invoice_id": str(invoice_id),
                        "payment_id": str(existing.id),
                        "provider_reference": provider_reference,
                    },
                )
                return self._result(invoice, existing.id, created=False)

        payment = Payment(
            invoice_id=invoice_id,
            amount_minor=amount_minor,
            method=payment_method.value,
            provider_reference=provider_reference or None,
            paid_at=paid_at or self.clock.now_utc(),
            created_by_id=actor_id,
        )
        savepoint = self.session.begin_nested()
        try:
            self.session.add(payment)
            self.session.flush()
            savepoint.commit()
        except IntegrityError:
            # A concurrent request recorded the same reference first.
            savepoint.rollback()
            existing = self._find_by_reference(invoice_id, provider_reference)
            if existing is None:
                raise
            return self._result(invoice, existing.id, created=False)

        invoices = InvoiceSelector(self.session)
        paid = invoices.paid_minor(invoice_id)
        if paid >= invoice.total_minor and can_settle(invoice.status):
            previous = invoice.status
            invoice.status = InvoiceStatus.PAID.value
            invoice.updated_by_id = actor_id
            self.session.flush()
            logger.info(
                "invoice_settled",
                extra={
                    "invoice_id": str(invoice_id),
                    "from_status": previous,
                    "paid_minor": paid,
                },
            )

        result = self._result(invoice, payment.id, created=True)
        logger.info(
            "payment_recorded",
            extra={
                "invoice_id": str(invoice_id),
                "payment_id": str(payment.id),
                "amount_minor": amount_minor,
                "method": payment_method.value,
                "outstanding_minor": result.invoice.outstanding_minor,
                "overpaid_minor": result.overpaid_minor,
            },
        )
        return result

    def _result(self, invoice: Invoice, payment_id: UUID, created: bool) -> PaymentRecordResult:
        paid = InvoiceSelector(self.session).paid_minor(invoice.id)
        return PaymentRecordResult(
            payment_id=payment_id,
            invoice=invoice.to_dto(paid_minor=paid),
            created=created,
            overpaid_minor=max(0, paid - invoice.total_minor),
        )

    def payer_ref(self, invoice: Invoice) -> PayerRef:
        if invoice.payer_guardian_id is not None:
            guardian = self.session.get(Guardian, invoice.payer_guardian_id)
            return PayerRef(
                payer_type=PayerType.GUARDIAN,
                payer_id=guardian.id,
                name=guardian.full_name,
                email=guardian.email,
            )
        student = self.session.get(Student, invoice.payer_student_id)
        return PayerRef(
            payer_type=PayerType.STUDENT,
            payer_id=student.id,
            name=student.full_name,
            email=student.email,
        )

    def collect_payment(
        self,
        invoice_id: UUID,
        gateway: PaymentGateway,
        actor_id: UUID = SYSTEM_ACTOR_ID,
    ) -> CollectionResult:
        """
        Charge the outstanding balance through the gateway.

        Only a SUCCEEDED charge records a (card) payment.  FAILED and
        REQUIRES_ACTION leave the invoice untouched.
        """
        invoice = self._load_invoice(invoice_id)
        if invoice.is_void:
            raise InvoiceVoidError(str(invoice_id), "collect payment for")

        outstanding = InvoiceSelector(self.session).outstanding_minor(invoice_id)
        if outstanding <= 0:
            raise InvalidAmountError("outstanding_minor", outstanding, "nothing to collect")

        charge = gateway.charge(self.payer_ref(invoice), outstanding)
        logger.info(
            "payment_charge_attempted",
            extra={
                "invoice_id": str(invoice_id),
                "amount_minor": outstanding,
                "outcome": charge.outcome.value,
            },
        )
        if charge.outcome != ChargeOutcome.SUCCEEDED:
            return CollectionResult(charge=charge)

        recorded = self.record_payment(
            invoice_id,
            outstanding,
            PaymentMethod.CARD,
            provider_reference=charge.provider_reference,
            actor_id=actor_id,
        )
        return CollectionResult(charge=charge, payment=recorded)
