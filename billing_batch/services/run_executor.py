"""
BillingRunExecutor -- SAVEPOINT-per-payer billing run engine.

Contract:
    Drives a billing run end to end: create (select, group, assemble one
    invoice per payer), retry of failed payers, and query.

Architecture: billing_batch/services.  Imports from billing_batch.domain,
    billing_batch.models, billing_config and kernel services/selectors.

Invariants enforced:
    - SAVEPOINT isolation per payer: one payer's failure never rolls back
      another payer's invoice, and never aborts the run.
    - At most one invoice per payer per run.
    - At most one active run per organisation (OrgRunGuard plus a row lock
      on the organisation).
    - Run status is derived from the cumulative invoice and failure counts.
    - All timestamps come from the injected Clock.

Non-goals:
    - Does NOT call ``session.commit()`` -- the caller's session_scope()
      owns the outer transaction.
    - Does NOT retry automatically; retry is an explicit operator action.
"""

from __future__ import annotations

from collections.abc import Collection
from datetime import date
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from billing_config import BillingSettings, get_active_config
from billing_kernel.domain.clock import Clock, SystemClock
from billing_kernel.domain.dtos import AssembledInvoice, PayerGroup
from billing_kernel.domain.grouping import group_by_payer
from billing_kernel.domain.rates import RateCardResolver, RateResolver
from billing_kernel.exceptions import (
    BillingRunInProgressError,
    BillingRunNotFoundError,
    DuplicateRunInvoiceError,
    InvalidBillingPeriodError,
    InvalidRetryRequestError,
    PayerBillingError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.models.organisation import Organisation
from billing_kernel.selectors.lesson_selector import LessonSelector, parse_billing_mode
from billing_kernel.selectors.organisation_selector import (
    OrganisationInfo,
    OrganisationSelector,
)
from billing_kernel.services.credit_ledger import CreditLedger
from billing_kernel.services.invoice_assembler import InvoiceAssembler
from billing_kernel.services.sequence_service import SequenceService

from billing_batch.domain.types import (
    BillingRun,
    BillingRunRequest,
    BillingRunStatus,
    FailedPayer,
    RetryResult,
    RunSummary,
    derive_run_status,
)
from billing_batch.models.billing_run import BillingRunModel
from billing_batch.services.run_guard import OrgRunGuard, default_run_guard

logger = get_logger("batch.run_executor")


class BillingRunExecutor:
    """Billing run engine with SAVEPOINT-per-payer isolation.

    Contract:
        - ``create_run()`` inserts a run and bills every payer with lessons
          in the period.
        - ``retry_run()`` re-bills named payers of an existing run.
        - ``get_run()`` for queries.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        settings: BillingSettings | None = None,
        run_guard: OrgRunGuard | None = None,
        sequence_service: SequenceService | None = None,
    ):
        self._session = session
        self._clock = clock or SystemClock()
        self._settings = settings or get_active_config()
        self._guard = run_guard or default_run_guard
        self._orgs = OrganisationSelector(session)
        self._lessons = LessonSelector(session)
        self._ledger = CreditLedger(
            session,
            self._clock,
            default_notice_hours=self._settings.default_cancellation_notice_hours,
            credit_expiry_days=self._settings.credit_expiry_days,
        )
        self._assembler = InvoiceAssembler(
            session,
            self._clock,
            self._ledger,
            sequence_service=sequence_service or SequenceService(session),
            invoice_number_prefix=self._settings.invoice_number_prefix,
            invoice_due_days=self._settings.invoice_due_days,
            require_payer_email=self._settings.require_payer_email,
        )

    # -------------------------------------------------------------------------
    # Create
    # -------------------------------------------------------------------------

    def create_run(
        self,
        request: BillingRunRequest,
        actor_id: UUID,
        rate_resolver: RateResolver | None = None,
    ) -> BillingRun:
        """Create a billing run and invoice every billable payer.

        Raises:
            OrganisationNotFoundError / TermNotFoundError.
            InvalidBillingPeriodError: dates missing or start after end.
            InvalidBillingModeError.
            BillingRunInProgressError: another run holds the org.
        """
        org = self._orgs.get(request.org_id)
        mode = parse_billing_mode(request.billing_mode)
        start_date, end_date = self._resolve_period(request)
        fallback = request.fallback_rate_minor
        if fallback is None:
            fallback = self._settings.default_fallback_rate_minor

        with self._guard.hold(org.org_id), LogContext.bind(
            org_id=str(org.org_id), actor_id=str(actor_id),
        ):
            self._lock_org_row(org.org_id)

            now = self._clock.now_utc()
            dto = BillingRun(
                run_id=uuid4(),
                org_id=org.org_id,
                run_type=request.run_type,
                start_date=start_date,
                end_date=end_date,
                billing_mode=mode,
                status=BillingRunStatus.PENDING,
                generate_invoices=request.generate_invoices,
                fallback_rate_minor=fallback,
                term_id=request.term_id,
                created_by=actor_id,
                created_at=now,
            )
            model = BillingRunModel.from_dto(dto, created_by_id=actor_id)
            model.created_at = now
            self._session.add(model)
            self._session.flush()

            with LogContext.bind(billing_run_id=str(model.id)):
                logger.info(
                    "billing_run_started",
                    extra={
                        "start_date": start_date,
                        "end_date": end_date,
                        "billing_mode": mode.value,
                        "run_type": request.run_type.value,
                        "generate_invoices": request.generate_invoices,
                    },
                )

                selection = self._lessons.select_billable_lessons(
                    org.org_id, start_date, end_date, mode,
                )
                groups = group_by_payer(selection.participations)
                summary = RunSummary(
                    skipped_lessons=selection.skipped_lessons,
                    skipped_for_cancellation=selection.skipped_for_cancellation,
                )

                if request.generate_invoices:
                    resolver = rate_resolver or self._default_resolver(org.org_id, fallback)
                    for group in groups.values():
                        assembled, failed = self._bill_payer(
                            group, org, resolver, model, actor_id,
                        )
                        if assembled is not None:
                            summary = summary.with_invoice(
                                assembled.invoice_id, assembled.total_minor,
                            )
                        elif failed is not None:
                            summary = summary.with_failure(failed)

                status = derive_run_status(summary.invoice_count, len(summary.failed_payers))
                model.status = status.value
                model.summary = summary.to_dict()
                model.completed_at = self._clock.now_utc()
                self._session.flush()

                logger.info(
                    "billing_run_completed",
                    extra={
                        "status": status.value,
                        "payer_count": len(groups),
                        "invoice_count": summary.invoice_count,
                        "total_amount_minor": summary.total_amount_minor,
                        "failed_payer_count": len(summary.failed_payers),
                        "skipped_lessons": summary.skipped_lessons,
                        "skipped_for_cancellation": summary.skipped_for_cancellation,
                    },
                )

            return model.to_dto()

    # -------------------------------------------------------------------------
    # Retry
    # -------------------------------------------------------------------------

    def retry_run(
        self,
        org_id: UUID,
        run_id: UUID,
        failed_payer_ids: Collection[UUID | str],
        actor_id: UUID,
        rate_resolver: RateResolver | None = None,
    ) -> RetryResult:
        """Re-bill the named payers using the run's recorded parameters.

        Payers with nothing left to bill (e.g. invoiced meanwhile) are
        cleared from the failure list without creating an invoice.

        Raises:
            InvalidRetryRequestError: empty payer list.
            BillingRunNotFoundError: no such run for the org.
            BillingRunInProgressError: another run holds the org.
        """
        payer_ids = [str(pid) for pid in failed_payer_ids or ()]
        if not payer_ids:
            raise InvalidRetryRequestError("failed_payer_ids must not be empty")

        model = self._load_run(org_id, run_id)
        org = self._orgs.get(org_id)

        with self._guard.hold(org_id), LogContext.bind(
            org_id=str(org_id), billing_run_id=str(run_id), actor_id=str(actor_id),
        ):
            self._lock_org_row(org_id)
            run = model.to_dto()

            logger.info(
                "billing_run_retry_started",
                extra={"payer_count": len(payer_ids)},
            )

            selection = self._lessons.select_billable_lessons(
                org_id, run.start_date, run.end_date, run.billing_mode, payer_ids=payer_ids,
            )
            groups = group_by_payer(selection.participations)
            resolver = rate_resolver or self._default_resolver(org_id, run.fallback_rate_minor)

            summary = run.summary
            new_invoices = 0
            still_failed: list[FailedPayer] = []
            billed_payers: set[str] = set()

            for group in groups.values():
                payer_id = str(group.payer.payer_id)
                billed_payers.add(payer_id)
                assembled, failed = self._bill_payer(group, org, resolver, model, actor_id)
                summary = summary.without_failed_payer(payer_id)
                if assembled is not None:
                    new_invoices += 1
                    summary = summary.with_invoice(assembled.invoice_id, assembled.total_minor)
                elif failed is not None:
                    still_failed.append(failed)
                    summary = summary.with_failure(failed)

            for payer_id in payer_ids:
                if payer_id not in billed_payers:
                    summary = summary.without_failed_payer(payer_id)

            status = derive_run_status(summary.invoice_count, len(summary.failed_payers))
            model.status = status.value
            model.summary = summary.to_dict()
            model.completed_at = self._clock.now_utc()
            model.updated_by_id = actor_id
            self._session.flush()

            logger.info(
                "billing_run_retry_completed",
                extra={
                    "new_invoice_count": new_invoices,
                    "still_failed_count": len(still_failed),
                    "status": status.value,
                },
            )

        return RetryResult(
            new_invoice_count=new_invoices,
            still_failed=tuple(still_failed),
            final_status=status,
        )

    # -------------------------------------------------------------------------
    # Query
    # -------------------------------------------------------------------------

    def get_run(self, run_id: UUID, org_id: UUID | None = None) -> BillingRun:
        if org_id is not None:
            return self._load_run(org_id, run_id).to_dto()
        model = self._session.get(BillingRunModel, run_id)
        if model is None:
            raise BillingRunNotFoundError(str(run_id))
        return model.to_dto()

    # -------------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------------

    def _bill_payer(
        self,
        group: PayerGroup,
        org: OrganisationInfo,
        resolver: RateResolver,
        run: BillingRunModel,
        actor_id: UUID,
    ) -> tuple[AssembledInvoice | None, FailedPayer | None]:
        """Assemble one payer's invoice inside its own SAVEPOINT."""
        payer = group.payer
        with LogContext.bind(payer_key=group.key):
            savepoint = self._session.begin_nested()
            try:
                assembled = self._assembler.assemble(
                    group,
                    resolver,
                    org.vat_rate,
                    org_id=org.org_id,
                    currency_code=org.currency_code,
                    billing_run_id=run.id,
                    term_id=run.term_id,
                    actor_id=actor_id,
                )
                savepoint.commit()
                return assembled, None
            except DuplicateRunInvoiceError as exc:
                savepoint.rollback()
                logger.info("payer_already_invoiced", extra={"invoice_id": exc.invoice_id})
                return None, None
            except PayerBillingError as exc:
                savepoint.rollback()
                failed = FailedPayer.from_dict(exc.to_failed_payer())
            except Exception as exc:
                savepoint.rollback()
                failed = FailedPayer(
                    payer_id=str(payer.payer_id),
                    payer_type=payer.payer_type.value,
                    payer_name=payer.name,
                    payer_email=payer.email,
                    error=str(exc) or type(exc).__name__,
                )

            logger.warning(
                "payer_billing_failed",
                extra={
                    "payer_id": failed.payer_id,
                    "payer_type": failed.payer_type,
                    "error": failed.error,
                },
            )
            return None, failed

    def _resolve_period(self, request: BillingRunRequest) -> tuple[date, date]:
        start_date, end_date = request.start_date, request.end_date
        if request.term_id is not None and (start_date is None or end_date is None):
            term = self._orgs.get_term(request.org_id, request.term_id)
            start_date = start_date or term.start_date
            end_date = end_date or term.end_date
        if start_date is None or end_date is None or start_date > end_date:
            raise InvalidBillingPeriodError(start_date, end_date)
        return start_date, end_date

    def _default_resolver(self, org_id: UUID, fallback_rate_minor: int | None) -> RateResolver:
        return RateCardResolver(self._orgs.rate_cards(org_id), fallback_rate_minor)

    def _load_run(self, org_id: UUID, run_id: UUID) -> BillingRunModel:
        model = self._session.execute(
            select(BillingRunModel).where(
                BillingRunModel.id == run_id,
                BillingRunModel.org_id == org_id,
            )
        ).scalar_one_or_none()
        if model is None:
            raise BillingRunNotFoundError(str(run_id))
        return model

    def _lock_org_row(self, org_id: UUID) -> None:
        """Row lock that serialises runs across processes (no-op on SQLite)."""
        try:
            self._session.execute(
                select(Organisation.id)
                .where(Organisation.id == org_id)
                .with_for_update(nowait=True)
            )
        except OperationalError as exc:
            raise BillingRunInProgressError(str(org_id)) from exc

