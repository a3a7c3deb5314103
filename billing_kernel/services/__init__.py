"""Services for the billing kernel (write side)."""

from billing_kernel.services.credit_ledger import CreditLedger
from billing_kernel.services.invoice_assembler import InvoiceAssembler
from billing_kernel.services.invoice_lifecycle import InvoiceLifecycleService
from billing_kernel.services.payment_recorder import CollectionResult, PaymentRecorder
from billing_kernel.services.sequence_service import SequenceService

__all__ = [
    "CollectionResult",
    "CreditLedger",
    "InvoiceAssembler",
    "InvoiceLifecycleService",
    "PaymentRecorder",
    "SequenceService",
]
