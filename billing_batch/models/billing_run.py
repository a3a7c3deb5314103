"""
ORM model for billing run persistence.

Contract:
    BillingRunModel persists the run request, its status and the JSON
    summary.  ``to_dto()`` / ``from_dto()`` round-trip with BillingRun.

Architecture: billing_batch/models.  Imports from billing_kernel.db.base only.

Invariants enforced:
    - Runs are never deleted; a retry updates status and summary in place.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import JSON, BigInteger, Boolean, Date, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from billing_kernel.db.base import TrackedBase, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from billing_batch.domain.types import BillingRun


class BillingRunModel(TrackedBase):
    """Persistent billing run record."""

    __tablename__ = "billing_runs"

    __table_args__ = (
        Index("ix_billing_runs_org_created", "org_id", "created_at"),
        Index("ix_billing_runs_status", "status"),
    )

    org_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("organisations.id"),
        nullable=False,
    )
    run_type: Mapped[str] = mapped_column(String(20), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    billing_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    generate_invoices: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    fallback_rate_minor: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    term_id: Mapped[UUID | None] = mapped_column(
        UUIDString(), ForeignKey("terms.id"), nullable=True,
    )
    summary: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> BillingRun:
        from billing_batch.domain.types import (
            BillingRun,
            BillingRunStatus,
            RunSummary,
            RunType,
        )
        from billing_kernel.domain.dtos import BillingMode

        return BillingRun(
            run_id=self.id,
            org_id=self.org_id,
            run_type=RunType(self.run_type),
            start_date=self.start_date,
            end_date=self.end_date,
            billing_mode=BillingMode(self.billing_mode),
            status=BillingRunStatus(self.status),
            summary=RunSummary.from_dict(self.summary),
            generate_invoices=self.generate_invoices,
            fallback_rate_minor=self.fallback_rate_minor,
            term_id=self.term_id,
            created_by=self.created_by_id,
            created_at=self.created_at,
            completed_at=self.completed_at,
        )

    @classmethod
    def from_dto(cls, dto: BillingRun, created_by_id: UUID) -> BillingRunModel:
        return cls(
            id=dto.run_id,
            org_id=dto.org_id,
            run_type=dto.run_type.value,
            start_date=dto.start_date,
            end_date=dto.end_date,
            billing_mode=dto.billing_mode.value,
            status=dto.status.value,
            generate_invoices=dto.generate_invoices,
            fallback_rate_minor=dto.fallback_rate_minor,
            term_id=dto.term_id,
            summary=dto.summary.to_dict(),
            completed_at=dto.completed_at,
            created_by_id=created_by_id,
            updated_by_id=None,
        )

    def __repr__(self) -> str:
        return f"<BillingRun {self.start_date}..{self.end_date}: {self.status}>"
