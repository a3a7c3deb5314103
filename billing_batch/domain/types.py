"""
billing_batch.domain.types -- Pure frozen dataclasses for billing runs.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.  RunSummary is the one structure that crosses the
wire: ``to_dict()`` / ``from_dict()`` use the camelCase keys the
dashboard reads.

Invariants enforced:
    - Run status is derived from counts alone (derive_run_status), both at
      creation and after every retry.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID

from billing_kernel.domain.dtos import BillingMode


# =============================================================================
# Status enums
# =============================================================================


class BillingRunStatus(str, Enum):
    """Run-level lifecycle status."""

    PENDING = "pending"  # Created, payers not yet processed
    COMPLETED = "completed"  # No payer failed (including nothing to bill)
    PARTIAL = "partial"  # Some payers failed, at least one invoice created
    FAILED = "failed"  # Payers failed and no invoice was created


class RunType(str, Enum):
    MONTHLY = "monthly"
    TERM = "term"
    CUSTOM = "custom"
    MANUAL = "manual"


def derive_run_status(invoice_count: int, failed_count: int) -> BillingRunStatus:
    if failed_count == 0:
        return BillingRunStatus.COMPLETED
    if invoice_count > 0:
        return BillingRunStatus.PARTIAL
    return BillingRunStatus.FAILED


# =============================================================================
# Summary
# =============================================================================


@dataclass(frozen=True)
class FailedPayer:
    payer_id: str
    payer_type: str | None
    payer_name: str
    payer_email: str | None
    error: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "payerId": self.payer_id,
            "payerType": self.payer_type,
            "payerName": self.payer_name,
            "payerEmail": self.payer_email,
            "error": self.error,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> FailedPayer:
        return cls(
            payer_id=str(data["payerId"]),
            payer_type=data.get("payerType"),
            payer_name=data.get("payerName") or "",
            payer_email=data.get("payerEmail"),
            error=data.get("error") or "",
        )


@dataclass(frozen=True)
class RunSummary:
    """Outcome counters of a billing run, stored as JSON on the run row."""

    invoice_count: int = 0
    total_amount_minor: int = 0
    invoice_ids: tuple[str, ...] = ()
    skipped_lessons: int = 0
    skipped_for_cancellation: int = 0
    failed_payers: tuple[FailedPayer, ...] = ()

    def with_invoice(self, invoice_id: UUID, total_minor: int) -> RunSummary:
        return replace(
            self,
            invoice_count=self.invoice_count + 1,
            total_amount_minor=self.total_amount_minor + total_minor,
            invoice_ids=self.invoice_ids + (str(invoice_id),),
        )

    def with_failure(self, failed: FailedPayer) -> RunSummary:
        return replace(self, failed_payers=self.failed_payers + (failed,))

    def without_failed_payer(self, payer_id: str) -> RunSummary:
        return replace(
            self,
            failed_payers=tuple(f for f in self.failed_payers if f.payer_id != payer_id),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "invoiceCount": self.invoice_count,
            "totalAmount": self.total_amount_minor,
            "invoiceIds": list(self.invoice_ids),
            "skippedLessons": self.skipped_lessons,
            "skippedForCancellation": self.skipped_for_cancellation,
            "failedPayers": [f.to_dict() for f in self.failed_payers],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> RunSummary:
        data = data or {}
        return cls(
            invoice_count=int(data.get("invoiceCount", 0)),
            total_amount_minor=int(data.get("totalAmount", 0)),
            invoice_ids=tuple(str(i) for i in data.get("invoiceIds", ())),
            skipped_lessons=int(data.get("skippedLessons", 0)),
            skipped_for_cancellation=int(data.get("skippedForCancellation", 0)),
            failed_payers=tuple(
                FailedPayer.from_dict(f) for f in data.get("failedPayers", ())
            ),
        )


# =============================================================================
# Run DTOs
# =============================================================================


@dataclass(frozen=True)
class BillingRunRequest:
    """Validated input for creating a run."""

    org_id: UUID
    start_date: date | None = None
    end_date: date | None = None
    run_type: RunType = RunType.MANUAL
    billing_mode: BillingMode = BillingMode.DELIVERED
    generate_invoices: bool = True
    fallback_rate_minor: int | None = None
    term_id: UUID | None = None


@dataclass(frozen=True)
class BillingRun:
    """Immutable snapshot of a billing run."""

    run_id: UUID
    org_id: UUID
    run_type: RunType
    start_date: date
    end_date: date
    billing_mode: BillingMode
    status: BillingRunStatus
    summary: RunSummary = field(default_factory=RunSummary)
    generate_invoices: bool = True
    fallback_rate_minor: int | None = None
    term_id: UUID | None = None
    created_by: UUID | None = None
    created_at: datetime | None = None
    completed_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.run_id),
            "orgId": str(self.org_id),
            "runType": self.run_type.value,
            "startDate": self.start_date.isoformat(),
            "endDate": self.end_date.isoformat(),
            "billingMode": self.billing_mode.value,
            "termId": str(self.term_id) if self.term_id else None,
            "status": self.status.value,
            "summary": self.summary.to_dict(),
        }


@dataclass(frozen=True)
class RetryResult:
    new_invoice_count: int
    still_failed: tuple[FailedPayer, ...]
    final_status: BillingRunStatus

    def to_dict(self) -> dict[str, Any]:
        return {
            "newInvoiceCount": self.new_invoice_count,
            "stillFailed": [f.to_dict() for f in self.still_failed],
            "finalStatus": self.final_status.value,
        }
