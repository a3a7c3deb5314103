"""
Typed Exception Hierarchy for the Billing Kernel.

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- ValidationError
    |   +-- InvalidAmountError
    |   +-- InvalidBillingPeriodError
    |   +-- InvalidBillingModeError
    |   +-- InvalidRetryRequestError
    |   +-- InvalidPaymentMethodError
    |   +-- InvalidRequestError
    |
    +-- NotFoundError
    |   +-- OrganisationNotFoundError
    |   +-- StudentNotFoundError
    |   +-- LessonNotFoundError
    |   +-- TermNotFoundError
    |   +-- InvoiceNotFoundError
    |   +-- BillingRunNotFoundError
    |
    +-- BillingRunError
    |   +-- BillingRunInProgressError
    |   +-- PayerBillingError
    |   +-- DuplicateRunInvoiceError
    |   +-- RateResolutionError
    |
    +-- InvoiceError
    |   +-- InvalidStatusTransitionError
    |   +-- InvoiceVoidError
    |
    +-- ConcurrencyError
        +-- CreditAlreadyRedeemedError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                        | When Raised
----------------|-----------------------------|-----------------------------------------
Validation      | INVALID_AMOUNT              | Non-positive credit / negative payment
                | INVALID_BILLING_PERIOD      | Missing dates or start after end
                | INVALID_BILLING_MODE        | Mode not "delivered" / "upfront"
                | INVALID_RETRY_REQUEST       | Retry without payer ids
                | INVALID_PAYMENT_METHOD      | Method not cash / card / bank_transfer / other
                | INVALID_REQUEST             | Missing or malformed request field
----------------|-----------------------------|-----------------------------------------
Not found       | ORGANISATION_NOT_FOUND      | Unknown org id
                | STUDENT_NOT_FOUND           | Unknown student id
                | LESSON_NOT_FOUND            | Unknown lesson id
                | TERM_NOT_FOUND              | Unknown term id for the org
                | INVOICE_NOT_FOUND           | Unknown invoice id
                | BILLING_RUN_NOT_FOUND       | Unknown run id for the org
----------------|-----------------------------|-----------------------------------------
Billing run     | BILLING_RUN_IN_PROGRESS     | Another run is active for the org
                | PAYER_BILLING_FAILED        | One payer could not be invoiced (retryable)
                | DUPLICATE_RUN_INVOICE       | Payer already invoiced by this run
                | RATE_RESOLUTION_FAILED      | No rate for a lesson duration
----------------|-----------------------------|-----------------------------------------
Invoice         | INVALID_STATUS_TRANSITION   | e.g. paid -> draft
                | INVOICE_VOID                | Payment against a void invoice
----------------|-----------------------------|-----------------------------------------
Concurrency     | CREDIT_ALREADY_REDEEMED     | Credit claimed by a concurrent redemption

===============================================================================
HANDLING PATTERNS
===============================================================================

1. PER-PAYER FAILURES ARE DATA, NOT CRASHES:

    try:
        assembler.assemble(group, ...)
    except PayerBillingError as e:
        summary.failed_payers.append(e.to_failed_payer())

2. CREDIT RACES ARE SKIPPED, NEVER SURFACED:

    claim = ledger.claim_credit(credit_id, as_of)
    if claim.outcome is CreditClaimOutcome.ALREADY_REDEEMED:
        continue

3. VALIDATION ERRORS ARE RAISED AT THE CALL SITE:

    ledger.issue_credit(student_id, 0)   # -> InvalidAmountError
"""

from datetime import date
from typing import Any


class BillingKernelError(Exception):
    """
    Base exception for all billing kernel errors.

    All subclasses have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Validation exceptions


class ValidationError(BillingKernelError):
    """Input rejected synchronously at the call site."""

    code: str = "VALIDATION_ERROR"


class InvalidAmountError(ValidationError):
    """Monetary amount outside the permitted range."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount_minor: int, rule: str):
        self.field = field
        self.amount_minor = amount_minor
        self.rule = rule
        super().__init__(f"Invalid {field}: {amount_minor} ({rule})")


class InvalidBillingPeriodError(ValidationError):
    """Billing period is missing or inverted."""

    code: str = "INVALID_BILLING_PERIOD"

    def __init__(self, start_date: date | None, end_date: date | None):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"Invalid billing period: start={start_date} end={end_date}"
        )


class InvalidBillingModeError(ValidationError):
    """Billing mode is not recognised."""

    code: str = "INVALID_BILLING_MODE"

    def __init__(self, billing_mode: str):
        self.billing_mode = billing_mode
        super().__init__(
            f"Invalid billing mode: {billing_mode!r} "
            "(expected 'delivered' or 'upfront')"
        )


class InvalidRetryRequestError(ValidationError):
    """Retry request is missing required fields."""

    code: str = "INVALID_RETRY_REQUEST"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid retry request: {reason}")


class InvalidPaymentMethodError(ValidationError):
    """Payment method is not recognised."""

    code: str = "INVALID_PAYMENT_METHOD"

    def __init__(self, method: str):
        self.method = method
        super().__init__(f"Invalid payment method: {method!r}")


class InvalidRequestError(ValidationError):
    """A request field is missing or cannot be parsed."""

    code: str = "INVALID_REQUEST"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


# Not-found exceptions


class NotFoundError(BillingKernelError):
    """Referenced entity does not exist."""

    code: str = "NOT_FOUND"

    entity_type: str = "entity"

    def __init__(self, entity_id: str):
        self.entity_id = entity_id
        super().__init__(f"{self.entity_type} not found: {entity_id}")


class OrganisationNotFoundError(NotFoundError):
    code: str = "ORGANISATION_NOT_FOUND"
    entity_type = "Organisation"


class StudentNotFoundError(NotFoundError):
    code: str = "STUDENT_NOT_FOUND"
    entity_type = "Student"


class LessonNotFoundError(NotFoundError):
    code: str = "LESSON_NOT_FOUND"
    entity_type = "Lesson"


class TermNotFoundError(NotFoundError):
    code: str = "TERM_NOT_FOUND"
    entity_type = "Term"


class InvoiceNotFoundError(NotFoundError):
    code: str = "INVOICE_NOT_FOUND"
    entity_type = "Invoice"


class BillingRunNotFoundError(NotFoundError):
    code: str = "BILLING_RUN_NOT_FOUND"
    entity_type = "Billing run"


# Billing run exceptions


class BillingRunError(BillingKernelError):
    """Base exception for billing run errors."""

    code: str = "BILLING_RUN_ERROR"


class BillingRunInProgressError(BillingRunError):
    """Another billing run is active for the same organisation."""

    code: str = "BILLING_RUN_IN_PROGRESS"

    def __init__(self, org_id: str, billing_run_id: str | None = None):
        self.org_id = org_id
        self.billing_run_id = billing_run_id
        detail = f" (run {billing_run_id})" if billing_run_id else ""
        super().__init__(
            f"A billing run is already in progress for organisation {org_id}{detail}"
        )


class PayerBillingError(BillingRunError):
    """
    Invoice assembly failed for one payer.

    Retryable and isolated: the orchestrator records it in the run
    summary and continues with the next payer.
    """

    code: str = "PAYER_BILLING_FAILED"

    def __init__(
        self,
        payer_id: str,
        payer_name: str,
        payer_email: str | None,
        reason: str,
        payer_type: str | None = None,
    ):
        self.payer_id = payer_id
        self.payer_type = payer_type
        self.payer_name = payer_name
        self.payer_email = payer_email
        self.reason = reason
        super().__init__(f"Billing failed for payer {payer_name} ({payer_id}): {reason}")

    def to_failed_payer(self) -> dict[str, Any]:
        return {
            "payerId": self.payer_id,
            "payerType": self.payer_type,
            "payerName": self.payer_name,
            "payerEmail": self.payer_email,
            "error": self.reason,
        }


class DuplicateRunInvoiceError(BillingRunError):
    """The payer already has an invoice from this billing run."""

    code: str = "DUPLICATE_RUN_INVOICE"

    def __init__(self, billing_run_id: str, payer_key: str, invoice_id: str):
        self.billing_run_id = billing_run_id
        self.payer_key = payer_key
        self.invoice_id = invoice_id
        super().__init__(
            f"Payer {payer_key} already invoiced by run {billing_run_id} "
            f"(invoice {invoice_id})"
        )


class RateResolutionError(BillingRunError):
    """No rate could be resolved for a lesson duration."""

    code: str = "RATE_RESOLUTION_FAILED"

    def __init__(self, duration_minutes: int):
        self.duration_minutes = duration_minutes
        super().__init__(
            f"No rate card for {duration_minutes}-minute lessons and no fallback rate"
        )


# Invoice exceptions


class InvoiceError(BillingKernelError):
    """Base exception for invoice errors."""

    code: str = "INVOICE_ERROR"


class InvalidStatusTransitionError(InvoiceError):
    """Invoice status change not permitted."""

    code: str = "INVALID_STATUS_TRANSITION"

    def __init__(self, invoice_id: str, from_status: str, to_status: str):
        self.invoice_id = invoice_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f'Cannot change invoice {invoice_id} status from "{from_status}" '
            f'to "{to_status}"'
        )


class InvoiceVoidError(InvoiceError):
    """Operation not allowed on a void invoice."""

    code: str = "INVOICE_VOID"

    def __init__(self, invoice_id: str, operation: str):
        self.invoice_id = invoice_id
        self.operation = operation
        super().__init__(f"Cannot {operation} void invoice {invoice_id}")


# Concurrency exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class CreditAlreadyRedeemedError(ConcurrencyError):
    """A make-up credit was claimed by another redemption first."""

    code: str = "CREDIT_ALREADY_REDEEMED"

    def __init__(self, credit_id: str):
        self.credit_id = credit_id
        super().__init__(f"Make-up credit {credit_id} has already been redeemed")
