"""
Request handlers for billing runs and payments.

Each handler takes a decoded JSON body, drives the orchestrator within
the caller's session and returns ``(http_status, payload)``.  Typed
kernel errors are mapped to status codes here and nowhere else:

    ValidationError                                   -> 400
    NotFoundError                                     -> 404
    BillingRunInProgressError, DuplicateRunInvoiceError -> 409
    any other BillingKernelError                      -> 422

The caller owns the transaction; unexpected exceptions propagate so that
``session_scope()`` rolls back.
"""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy.orm import Session

from billing_config import BillingSettings
from billing_kernel.domain.clock import Clock
from billing_kernel.domain.dtos import SYSTEM_ACTOR_ID
from billing_kernel.exceptions import (
    BillingKernelError,
    BillingRunInProgressError,
    DuplicateRunInvoiceError,
    InvalidAmountError,
    InvalidRequestError,
    NotFoundError,
    ValidationError,
)
from billing_kernel.logging_config import LogContext, get_logger
from billing_kernel.selectors.lesson_selector import parse_billing_mode

from billing_batch.domain.types import BillingRunRequest, RunType
from billing_batch.orchestrator import BillingOrchestrator
from billing_batch.services.run_guard import OrgRunGuard

logger = get_logger("batch.handlers")

Response = tuple[int, dict[str, Any]]


def error_status(exc: BillingKernelError) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, (BillingRunInProgressError, DuplicateRunInvoiceError)):
        return 409
    return 422


def error_response(exc: BillingKernelError) -> Response:
    status = error_status(exc)
    logger.warning(
        "request_rejected",
        extra={"status_code": status, "error_code": exc.code, "error": str(exc)},
    )
    return status, {"error": str(exc), "code": exc.code}


# ---------------------------------------------------------------------------
# Body parsing
# ---------------------------------------------------------------------------


def _uuid(body: dict[str, Any], key: str, required: bool = True) -> UUID | None:
    value = body.get(key)
    if value in (None, ""):
        if required:
            raise InvalidRequestError(key, "is required")
        return None
    try:
        return value if isinstance(value, UUID) else UUID(str(value))
    except ValueError:
        raise InvalidRequestError(key, f"not a valid id: {value!r}") from None


def _date(body: dict[str, Any], key: str) -> date | None:
    value = body.get(key)
    if value in (None, ""):
        return None
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise InvalidRequestError(key, f"not an ISO date: {value!r}") from None


def _int(body: dict[str, Any], key: str, required: bool = False) -> int | None:
    value = body.get(key)
    if value is None:
        if required:
            raise InvalidRequestError(key, "is required")
        return None
    if isinstance(value, bool):
        raise InvalidRequestError(key, "must be an integer")
    if isinstance(value, int):
        return value
    # Whole-valued floats (3000.0) are accepted; fractional amounts are not.
    if isinstance(value, float):
        if not value.is_integer():
            raise InvalidRequestError(key, "must be an integer")
        return int(value)
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            raise InvalidRequestError(key, "must be an integer") from None
    raise InvalidRequestError(key, "must be an integer")


def _bool(body: dict[str, Any], key: str, default: bool) -> bool:
    value = body.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.strip().lower() in ("true", "false"):
        return value.strip().lower() == "true"
    raise InvalidRequestError(key, "must be a boolean")


def parse_run_request(body: dict[str, Any], settings: BillingSettings) -> BillingRunRequest:
    run_type_raw = body.get("run_type") or settings.default_run_type
    try:
        run_type = RunType(run_type_raw)
    except ValueError:
        raise InvalidRequestError("run_type", f"unknown run type {run_type_raw!r}") from None

    fallback = _int(body, "fallback_rate_minor")
    if fallback is not None and fallback < 0:
        raise InvalidAmountError("fallback_rate_minor", fallback, "must be >= 0")

    return BillingRunRequest(
        org_id=_uuid(body, "org_id"),
        start_date=_date(body, "start_date"),
        end_date=_date(body, "end_date"),
        run_type=run_type,
        billing_mode=parse_billing_mode(body.get("billing_mode") or settings.default_billing_mode),
        generate_invoices=_bool(body, "generate_invoices", default=True),
        fallback_rate_minor=fallback,
        term_id=_uuid(body, "term_id", required=False),
    )


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


def handle_billing_run_request(
    session: Session,
    body: dict[str, Any],
    actor_id: UUID,
    *,
    clock: Clock | None = None,
    settings: BillingSettings | None = None,
    run_guard: OrgRunGuard | None = None,
) -> Response:
    """Create a billing run or retry failed payers of an existing one."""
    orchestrator = BillingOrchestrator.from_session(
        session, clock=clock, settings=settings, run_guard=run_guard,
    )
    action = body.get("action") or "create"

    with LogContext.bind(actor_id=str(actor_id)):
        try:
            if action == "create":
                request = parse_run_request(body, orchestrator.settings)
                run = orchestrator.create_executor().create_run(request, actor_id)
                return 201, {
                    "id": str(run.run_id),
                    "status": run.status.value,
                    "summary": run.summary.to_dict(),
                }

            if action == "retry":
                org_id = _uuid(body, "org_id")
                run_id = _uuid(body, "billing_run_id")
                payer_ids = body.get("failed_payer_ids") or []
                if not isinstance(payer_ids, list):
                    raise InvalidRequestError("failed_payer_ids", "must be a list")
                result = orchestrator.create_executor().retry_run(
                    org_id, run_id, payer_ids, actor_id,
                )
                return 200, result.to_dict()

            raise InvalidRequestError("action", f"unknown action {action!r}")
        except BillingKernelError as exc:
            return error_response(exc)


def handle_record_payment(
    session: Session,
    body: dict[str, Any],
    actor_id: UUID = SYSTEM_ACTOR_ID,
    *,
    clock: Clock | None = None,
    settings: BillingSettings | None = None,
) -> Response:
    """Record a payment; responds with the invoice's paid/outstanding state."""
    orchestrator = BillingOrchestrator.from_session(session, clock=clock, settings=settings)
    try:
        invoice_id = _uuid(body, "invoice_id")
        amount = _int(body, "amount_minor", required=True)
        method = body.get("method")
        if not method:
            raise InvalidRequestError("method", "is required")
        result = orchestrator.create_payment_recorder().record_payment(
            invoice_id,
            amount,
            method,
            provider_reference=body.get("provider_reference"),
            actor_id=actor_id,
        )
        return (201 if result.created else 200), result.to_dict()
    except BillingKernelError as exc:
        return error_response(exc)
