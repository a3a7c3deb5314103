"""Domain models for the billing kernel."""

from billing_kernel.models.credit import MakeUpCredit
from billing_kernel.models.invoice import Invoice, InvoiceItem, InvoiceStatus, PayerType
from billing_kernel.models.lesson import (
    AttendanceRecord,
    AttendanceStatus,
    Lesson,
    LessonParticipant,
    LessonStatus,
)
from billing_kernel.models.organisation import Organisation, RateCard, Term
from billing_kernel.models.payment import Payment, PaymentMethod
from billing_kernel.models.people import Guardian, Student, StudentGuardian, StudentStatus
from billing_kernel.services.sequence_service import SequenceCounter

__all__ = [
    "Organisation",
    "RateCard",
    "Term",
    "Student",
    "StudentStatus",
    "Guardian",
    "StudentGuardian",
    "Lesson",
    "LessonStatus",
    "LessonParticipant",
    "AttendanceRecord",
    "AttendanceStatus",
    "Invoice",
    "InvoiceItem",
    "InvoiceStatus",
    "PayerType",
    "MakeUpCredit",
    "Payment",
    "PaymentMethod",
    "SequenceCounter",
]
