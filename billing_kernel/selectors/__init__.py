"""Selectors for the billing kernel (read side)."""

from billing_kernel.selectors.credit_selector import CreditSelector
from billing_kernel.selectors.invoice_selector import InvoiceSelector
from billing_kernel.selectors.lesson_selector import LessonSelector
from billing_kernel.selectors.organisation_selector import (
    OrganisationInfo,
    OrganisationSelector,
    TermInfo,
)

__all__ = [
    "CreditSelector",
    "InvoiceSelector",
    "LessonSelector",
    "OrganisationInfo",
    "OrganisationSelector",
    "TermInfo",
]
