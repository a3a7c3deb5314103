"""
Pure domain layer.

DTOs, enums and calculations with no dependency on the ORM or the
database.  The clock module is the single sanctioned source of time.
"""

from billing_kernel.domain.calculations import (
    calculate_tax,
    calculate_total,
    check_cancellation_eligibility,
    hours_notice,
)
from billing_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from billing_kernel.domain.dtos import (
    AssembledInvoice,
    BillableParticipation,
    BillingMode,
    CancellationEligibility,
    CreditClaim,
    CreditClaimOutcome,
    CreditDTO,
    CreditRedemption,
    InvoiceDTO,
    InvoiceStatus,
    LineItemSpec,
    PayerGroup,
    PayerRef,
    PayerType,
    PaymentRecordResult,
    SelectionResult,
)
from billing_kernel.domain.grouping import group_by_payer

__all__ = [
    "AssembledInvoice",
    "BillableParticipation",
    "BillingMode",
    "CancellationEligibility",
    "Clock",
    "CreditClaim",
    "CreditClaimOutcome",
    "CreditDTO",
    "CreditRedemption",
    "DeterministicClock",
    "InvoiceDTO",
    "InvoiceStatus",
    "LineItemSpec",
    "PayerGroup",
    "PayerRef",
    "PayerType",
    "PaymentRecordResult",
    "SelectionResult",
    "SystemClock",
    "calculate_tax",
    "calculate_total",
    "check_cancellation_eligibility",
    "group_by_payer",
    "hours_notice",
]
