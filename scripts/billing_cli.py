#!/usr/bin/env python3
"""
Operate billing runs and payments from the command line.

Every command opens one transaction through session_scope(); results are
printed as JSON on stdout.

Usage:
    python3 scripts/billing_cli.py [--database-url URL] <command> [options]

Examples:
    # Create the schema
    python3 scripts/billing_cli.py init-db

    # Bill delivered lessons for March
    python3 scripts/billing_cli.py create-run --org <uuid> \\
        --start 2026-03-01 --end 2026-03-31 --run-type monthly

    # Retry two failed payers of a run
    python3 scripts/billing_cli.py retry-run --org <uuid> --run <uuid> \\
        --payer <uuid> --payer <uuid>

    # Record a bank transfer
    python3 scripts/billing_cli.py record-payment --invoice <uuid> \\
        --amount 4500 --method bank_transfer --reference TX-1001

    # List credits expiring within the warning window
    python3 scripts/billing_cli.py expiring-credits --org <uuid>
"""

from __future__ import annotations

import argparse
import json
import os
import sys
from datetime import timedelta
from pathlib import Path
from uuid import UUID

# Project root on sys.path
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

DB_URL = os.environ.get("BILLING_DATABASE_URL", "sqlite:///billing.db")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Billing runs, retries, payments and credit reports.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument(
        "--database-url",
        default=DB_URL,
        help="SQLAlchemy database URL (default: $BILLING_DATABASE_URL or sqlite:///billing.db).",
    )
    parser.add_argument(
        "--config-set",
        default="default",
        help="Billing settings set name under billing_config/sets (default: default).",
    )
    parser.add_argument(
        "--actor",
        type=UUID,
        default=None,
        help="Actor id recorded on writes (default: system actor).",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create all tables.")

    create = sub.add_parser("create-run", help="Create and execute a billing run.")
    create.add_argument("--org", required=True, help="Organisation id.")
    create.add_argument("--start", default=None, help="Period start (YYYY-MM-DD).")
    create.add_argument("--end", default=None, help="Period end (YYYY-MM-DD).")
    create.add_argument("--term", default=None, help="Term id; supplies the period when dates are omitted.")
    create.add_argument("--run-type", default=None, help="monthly, term, custom or manual.")
    create.add_argument("--mode", default=None, help="delivered or upfront.")
    create.add_argument("--fallback-rate", type=int, default=None, help="Fallback rate in minor units.")
    create.add_argument(
        "--no-invoices",
        action="store_true",
        help="Record the run and its skip counts without generating invoices.",
    )

    retry = sub.add_parser("retry-run", help="Retry failed payers of a run.")
    retry.add_argument("--org", required=True, help="Organisation id.")
    retry.add_argument("--run", required=True, help="Billing run id.")
    retry.add_argument("--payer", action="append", default=[], help="Failed payer id (repeatable).")

    pay = sub.add_parser("record-payment", help="Record a payment against an invoice.")
    pay.add_argument("--invoice", required=True, help="Invoice id.")
    pay.add_argument("--amount", type=int, required=True, help="Amount in minor units.")
    pay.add_argument("--method", required=True, help="cash, card, bank_transfer or other.")
    pay.add_argument("--reference", default=None, help="Provider reference (idempotency key).")

    expiring = sub.add_parser("expiring-credits", help="List credits about to expire.")
    expiring.add_argument("--org", required=True, help="Organisation id.")
    expiring.add_argument("--days", type=int, default=None, help="Window in days (default: settings).")

    overdue = sub.add_parser("mark-overdue", help="Move sent invoices past their due date to overdue.")
    overdue.add_argument("--org", required=True, help="Organisation id.")

    return parser.parse_args(argv)


def _print(status: int, payload: dict) -> int:
    print(json.dumps(payload, indent=2, default=str))
    return 0 if status < 400 else 1


def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)

    from billing_config import get_active_config
    from billing_kernel.db.engine import create_tables, init_engine_from_url, session_scope
    from billing_kernel.domain.dtos import SYSTEM_ACTOR_ID

    import billing_batch.models  # noqa: F401
    from billing_batch.handlers import handle_billing_run_request, handle_record_payment
    from billing_batch.orchestrator import BillingOrchestrator

    init_engine_from_url(args.database_url)
    settings = get_active_config(set_name=args.config_set)
    actor_id = args.actor or SYSTEM_ACTOR_ID

    if args.command == "init-db":
        create_tables()
        return _print(200, {"status": "ok"})

    with session_scope() as session:
        if args.command == "create-run":
            body = {
                "action": "create",
                "org_id": args.org,
                "start_date": args.start,
                "end_date": args.end,
                "term_id": args.term,
                "run_type": args.run_type,
                "billing_mode": args.mode,
                "fallback_rate_minor": args.fallback_rate,
                "generate_invoices": not args.no_invoices,
            }
            return _print(*handle_billing_run_request(session, body, actor_id, settings=settings))

        if args.command == "retry-run":
            body = {
                "action": "retry",
                "org_id": args.org,
                "billing_run_id": args.run,
                "failed_payer_ids": args.payer,
            }
            return _print(*handle_billing_run_request(session, body, actor_id, settings=settings))

        if args.command == "record-payment":
            body = {
                "invoice_id": args.invoice,
                "amount_minor": args.amount,
                "method": args.method,
                "provider_reference": args.reference,
            }
            return _print(*handle_record_payment(session, body, actor_id, settings=settings))

        if args.command == "expiring-credits":
            days = args.days if args.days is not None else settings.credit_expiry_warning_days
            ledger = BillingOrchestrator.from_session(
                session, settings=settings,
            ).create_credit_ledger()
            credits = ledger.credits_expiring_within(UUID(args.org), timedelta(days=days))
            return _print(200, {"credits": [c.to_dict() for c in credits]})

        if args.command == "mark-overdue":
            lifecycle = BillingOrchestrator.from_session(
                session, settings=settings,
            ).create_invoice_lifecycle()
            count = lifecycle.mark_overdue(UUID(args.org), actor_id=actor_id)
            return _print(200, {"overdue": count})

    return 2


if __name__ == "__main__":
    sys.exit(main())
