#!/usr/bin/env python3
"""Operator entry point for invoicing batch jobs.

Runs one job against the configured record store and prints its summary.

Usage:
    python scripts/invoicing_jobs.py backfill
    python scripts/invoicing_jobs.py reconcile [--dry-run]
    python scripts/invoicing_jobs.py client <identity>
    python scripts/invoicing_jobs.py company <identity> <YYYY-MM>
    python scripts/invoicing_jobs.py close-month [YYYY-MM]

Requirements:
    - APP_STORE_BACKEND=redis and APP_REDIS_URL pointing at the invoice store
      (the default in-memory store starts empty)
"""

import argparse
import asyncio
import logging
import sys
from datetime import UTC, datetime

from services.invoicing.periods import month_name, parse_month_key, previous_month
from services.invoicing.schema import BackfillResult, MonthlyRunResult, ReconciliationResult
from services.invoicing.service import InvoicingService
from services.shared.config import get_settings

MAX_PRINTED_ERRORS = 10


def print_errors(errors: list[str]) -> None:
    for error in errors[:MAX_PRINTED_ERRORS]:
        print(f"   - {error}")
    if len(errors) > MAX_PRINTED_ERRORS:
        print(f"   ... and {len(errors) - MAX_PRINTED_ERRORS} more errors")


def print_backfill(result: BackfillResult) -> None:
    print("\nInvoice generation completed")
    print(f"   - Client invoices created: {result.client_invoices_created}")
    print(f"   - Company invoices created: {result.company_invoices_created}")
    print(f"   - Errors: {len(result.errors)}")
    print_errors(result.errors)


def print_reconciliation(result: ReconciliationResult, dry_run: bool) -> None:
    print("\nDuplicate cleanup completed" + (" (dry run)" if dry_run else ""))
    print(f"   - Total duplicates found: {result.total_duplicates}")
    print(f"   - Successfully deleted: {result.deleted_count}")
    print(f"   - Errors: {len(result.errors)}")
    print_errors(result.errors)
    if result.details:
        print("\nDetails:")
        for detail in result.details:
            print(f"   Company: {detail.company_id}, Month: {detail.month_name}")
            print(f"      Kept: {detail.kept_invoice_id}")
            deleted = ", ".join(detail.deleted_invoice_ids) or "none"
            print(f"      Deleted: {deleted}")


def print_monthly(result: MonthlyRunResult) -> None:
    print(f"\nMonthly invoicing for {result.month_name} completed")
    print(f"   - Invoices created: {result.invoices_created}")
    print(f"   - Errors: {len(result.errors)}")
    print_errors(result.errors)


async def run(args: argparse.Namespace) -> int:
    service = InvoicingService.from_settings(get_settings())
    try:
        if args.command == "backfill":
            result = await service.run_backfill()
            print_backfill(result)
            return 1 if result.errors else 0

        if args.command == "reconcile":
            reconciliation = await service.reconcile_monthly_invoices(dry_run=args.dry_run)
            print_reconciliation(reconciliation, args.dry_run)
            return 1 if reconciliation.errors else 0

        if args.command == "client":
            invoice_ids = await service.process_client_orders(args.identity)
            print(f"Created {len(invoice_ids)} invoices for client {args.identity}")
            for invoice_id in invoice_ids:
                print(f"   - {invoice_id}")
            return 0

        if args.command == "company":
            month = parse_month_key(args.month)
            invoice_id = await service.process_company_monthly_invoices(args.identity, month)
            if invoice_id:
                print(f"Created invoice {invoice_id} for company {args.identity} ({month_name(month)})")
            else:
                print(f"No invoice created for company {args.identity} ({month_name(month)})")
            return 0

        month = (
            parse_month_key(args.month) if args.month else previous_month(datetime.now(UTC).date())
        )
        monthly = await service.process_all_company_monthly_invoices(month)
        print_monthly(monthly)
        return 1 if monthly.errors else 0
    finally:
        await service.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run invoicing batch jobs")
    commands = parser.add_subparsers(dest="command", required=True)

    commands.add_parser("backfill", help="Generate invoices for every order that has none")

    reconcile = commands.add_parser("reconcile", help="Delete duplicate monthly invoices")
    reconcile.add_argument(
        "--dry-run",
        action="store_true",
        help="Report duplicate groups without deleting anything",
    )

    client = commands.add_parser("client", help="Invoice one client's outstanding orders")
    client.add_argument("identity", help="Client email, uid, or id")

    company = commands.add_parser("company", help="Invoice one company for one month")
    company.add_argument("identity", help="Company uid, email, or id")
    company.add_argument("month", help="Billed month as YYYY-MM")

    close = commands.add_parser("close-month", help="Invoice every company for a month")
    close.add_argument(
        "month",
        nargs="?",
        default=None,
        help="Billed month as YYYY-MM (default: previous month)",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        return asyncio.run(run(args))
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
