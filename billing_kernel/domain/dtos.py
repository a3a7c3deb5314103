"""
billing_kernel.domain.dtos -- Pure data transfer objects for billing.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  Selectors and services return these instead of
ORM instances.

PayerGroup is the one mutable type: it is built up by group_by_payer()
and owns the per-payer dedup set.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from uuid import UUID

# Actor recorded on rows written by automated paths (gateway collection,
# scheduled overdue sweeps) when no user is involved.
SYSTEM_ACTOR_ID = UUID(int=0)


# =============================================================================
# Enums
# =============================================================================


class PayerType(str, Enum):
    GUARDIAN = "guardian"
    STUDENT = "student"


class BillingMode(str, Enum):
    """Which lessons a run bills."""

    DELIVERED = "delivered"  # completed lessons only
    UPFRONT = "upfront"  # scheduled and completed lessons


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    VOID = "void"


class CreditClaimOutcome(str, Enum):
    """Result of a compare-and-set claim on one credit."""

    REDEEMED = "redeemed"
    ALREADY_REDEEMED = "already_redeemed"


# =============================================================================
# Selection and grouping
# =============================================================================


@dataclass(frozen=True)
class PayerRef:
    """The party an invoice is addressed to."""

    payer_type: PayerType
    payer_id: UUID
    name: str
    email: str | None = None

    @property
    def key(self) -> str:
        return payer_key(self.payer_type, self.payer_id)


def payer_key(payer_type: PayerType | str, payer_id: UUID | str) -> str:
    """Grouping key for a payer: ``"<payer_type>:<payer_id>"``."""
    return f"{PayerType(payer_type).value}:{payer_id}"


@dataclass(frozen=True)
class BillableParticipation:
    """One student's participation in one billable lesson."""

    lesson_id: UUID
    lesson_title: str
    start_at: datetime
    duration_minutes: int
    student_id: UUID
    student_name: str
    payer: PayerRef


@dataclass(frozen=True)
class SelectionResult:
    participations: tuple[BillableParticipation, ...] = ()
    skipped_lessons: int = 0
    skipped_for_cancellation: int = 0

    @property
    def lesson_count(self) -> int:
        return len({p.lesson_id for p in self.participations})


@dataclass
class PayerGroup:
    """
    Lessons owed by one payer.

    ``seen_lesson_ids`` belongs to this group alone: the same lesson may
    appear in another payer's group, never twice in one.
    """

    payer: PayerRef
    lessons: list[BillableParticipation] = field(default_factory=list)
    seen_lesson_ids: set[UUID] = field(default_factory=set)
    student_ids: list[UUID] = field(default_factory=list)

    @property
    def key(self) -> str:
        return self.payer.key

    def add(self, participation: BillableParticipation) -> bool:
        """Append a participation unless its lesson is already billed here."""
        if participation.student_id not in self.student_ids:
            self.student_ids.append(participation.student_id)
        if participation.lesson_id in self.seen_lesson_ids:
            return False
        self.seen_lesson_ids.add(participation.lesson_id)
        self.lessons.append(participation)
        return True


# =============================================================================
# Invoices
# =============================================================================


@dataclass(frozen=True)
class LineItemSpec:
    description: str
    unit_price_minor: int
    quantity: int = 1
    linked_lesson_id: UUID | None = None
    student_id: UUID | None = None

    @property
    def amount_minor(self) -> int:
        return self.quantity * self.unit_price_minor


@dataclass(frozen=True)
class InvoiceDTO:
    invoice_id: UUID
    org_id: UUID
    billing_run_id: UUID | None
    invoice_number: str
    payer_key: str
    status: InvoiceStatus
    currency_code: str
    subtotal_minor: int
    tax_minor: int
    credit_offset_minor: int
    total_minor: int
    paid_minor: int = 0
    outstanding_minor: int = 0
    issue_date: date | None = None
    due_date: date | None = None
    linked_lesson_ids: tuple[UUID, ...] = ()

    def to_dict(self) -> dict:
        return {
            "id": str(self.invoice_id),
            "invoiceNumber": self.invoice_number,
            "billingRunId": str(self.billing_run_id) if self.billing_run_id else None,
            "payerKey": self.payer_key,
            "status": self.status.value,
            "currencyCode": self.currency_code,
            "subtotalMinor": self.subtotal_minor,
            "taxMinor": self.tax_minor,
            "creditOffsetMinor": self.credit_offset_minor,
            "totalMinor": self.total_minor,
            "paidMinor": self.paid_minor,
            "outstandingMinor": self.outstanding_minor,
            "issueDate": self.issue_date.isoformat() if self.issue_date else None,
            "dueDate": self.due_date.isoformat() if self.due_date else None,
        }


@dataclass(frozen=True)
class AssembledInvoice:
    """Outcome of assembling and persisting one payer's invoice."""

    invoice_id: UUID
    invoice_number: str
    payer_key: str
    line_count: int
    subtotal_minor: int
    tax_minor: int
    credit_offset_minor: int
    total_minor: int
    consumed_credit_ids: tuple[UUID, ...] = ()


# =============================================================================
# Credits
# =============================================================================


@dataclass(frozen=True)
class CreditDTO:
    credit_id: UUID
    org_id: UUID
    student_id: UUID
    credit_value_minor: int
    issued_at: datetime
    issued_for_lesson_id: UUID | None = None
    expires_at: datetime | None = None
    redeemed_at: datetime | None = None
    redeemed_invoice_id: UUID | None = None
    redeemed_value_minor: int | None = None
    source_credit_id: UUID | None = None

    def to_dict(self) -> dict:
        return {
            "id": str(self.credit_id),
            "studentId": str(self.student_id),
            "creditValueMinor": self.credit_value_minor,
            "issuedAt": self.issued_at.isoformat(),
            "expiresAt": self.expires_at.isoformat() if self.expires_at else None,
            "redeemedAt": self.redeemed_at.isoformat() if self.redeemed_at else None,
            "sourceCreditId": str(self.source_credit_id) if self.source_credit_id else None,
        }


@dataclass(frozen=True)
class CreditClaim:
    """Explicit result of an optimistic claim; losing a race is not an error."""

    credit_id: UUID
    outcome: CreditClaimOutcome
    redeemed_value_minor: int = 0
    remainder_credit_id: UUID | None = None

    @property
    def redeemed(self) -> bool:
        return self.outcome == CreditClaimOutcome.REDEEMED


@dataclass(frozen=True)
class CreditRedemption:
    total_redeemed_minor: int = 0
    consumed_credit_ids: tuple[UUID, ...] = ()
    remainder_credit_ids: tuple[UUID, ...] = ()
    lost_claims: int = 0


@dataclass(frozen=True)
class CancellationEligibility:
    eligible: bool
    hours_notice: int
    required_hours: int


# =============================================================================
# Payments
# =============================================================================


@dataclass(frozen=True)
class PaymentRecordResult:
    payment_id: UUID
    invoice: InvoiceDTO
    created: bool  # False when an existing referenced payment was returned
    overpaid_minor: int = 0

    def to_dict(self) -> dict:
        payload = self.invoice.to_dict()
        payload["paymentId"] = str(self.payment_id)
        payload["overpaidMinor"] = self.overpaid_minor
        payload["duplicate"] = not self.created
        return payload
