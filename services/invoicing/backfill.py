"""Batch invoice generation over all stored orders.

The backfill is a batch job, not a transaction: each client and each
(company, month) is an independent unit of work. Units run concurrently
with bounded fan-out; a failing unit is recorded in the result's
``errors`` and never cancels its siblings. The run always completes and
reports whatever it managed to create.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any, TypeVar

from services.invoicing.client_invoices import ClientInvoiceGenerator
from services.invoicing.directory import OrderDirectory
from services.invoicing.identity import build_lookup, preferred_identifier
from services.invoicing.metrics import invoicing_batch_errors_total
from services.invoicing.monthly_invoices import CompanyMonthlyAggregator
from services.invoicing.normalizer import (
    order_client_identity,
    order_company_identity,
    order_date,
    order_id,
)
from services.invoicing.periods import month_key, month_name, parse_month_key
from services.invoicing.schema import BackfillResult, MonthlyRunResult

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _ClientBatch:
    client: dict[str, Any]
    orders: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class _UnitOutcome:
    created: int = 0
    errors: list[str] = field(default_factory=list)


class BatchRunner:
    """Drives client and company invoice generation across all owners."""

    def __init__(
        self,
        directory: OrderDirectory,
        client_generator: ClientInvoiceGenerator,
        monthly_aggregator: CompanyMonthlyAggregator,
        concurrency: int = 8,
    ) -> None:
        self.directory = directory
        self.client_generator = client_generator
        self.monthly_aggregator = monthly_aggregator
        self.concurrency = concurrency

    async def _fan_out(self, units: list[Callable[[], Awaitable[T]]]) -> list[T]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def bounded(unit: Callable[[], Awaitable[T]]) -> T:
            async with semaphore:
                return await unit()

        return list(await asyncio.gather(*(bounded(unit) for unit in units)))

    async def _invoice_client(self, client_key: str, batch: _ClientBatch) -> _UnitOutcome:
        try:
            created, errors = await self.client_generator.invoice_orders(batch.client, batch.orders)
        except Exception as e:
            message = f"Error processing client {client_key}: {e}"
            logger.exception(message)
            return _UnitOutcome(errors=[message])
        for invoice in created:
            logger.info(
                f"Created invoice {invoice.invoice_number} for client {client_key}, "
                f"order {invoice.order_id}"
            )
        return _UnitOutcome(created=len(created), errors=errors)

    async def _invoice_company_month(
        self,
        company_id: str,
        key: str,
        orders: list[dict[str, Any]],
        company: dict[str, Any] | None,
    ) -> _UnitOutcome:
        try:
            invoice, created = await self.monthly_aggregator.generate_or_existing(
                company_id, parse_month_key(key), orders, company
            )
        except Exception as e:
            message = f"Error processing company {company_id} for {key}: {e}"
            logger.exception(message)
            return _UnitOutcome(errors=[message])
        if created:
            logger.info(f"Created invoice {invoice.invoice_number} for company {company_id} for {key}")
            return _UnitOutcome(created=1)
        logger.info(f"Invoice already exists for company {company_id} for {key}")
        return _UnitOutcome()

    async def run_backfill(self) -> BackfillResult:
        """Generate invoices for every stored order that has none.

        Client orders get one invoice each; company orders are grouped into
        one invoice per company per month.

        Returns:
            BackfillResult with created counts and human-readable errors
        """
        result = BackfillResult()
        logger.info("Starting invoice generation for existing orders")

        try:
            orders, clients, companies = await asyncio.gather(
                self.directory.all_orders(),
                self.directory.all_clients(),
                self.directory.all_companies(),
            )
        except Exception as e:
            message = f"Error loading orders, clients, or companies: {e}"
            logger.exception(message)
            result.errors.append(message)
            invoicing_batch_errors_total.labels(job="backfill").inc()
            return result

        logger.info(f"Found {len(orders)} orders, {len(clients)} clients, {len(companies)} companies")
        client_lookup = build_lookup(clients)
        company_lookup = build_lookup(companies)

        client_batches: dict[str, _ClientBatch] = {}
        company_months: dict[tuple[str, str], list[dict[str, Any]]] = {}
        missing_clients: set[str] = set()

        for order in orders:
            company_id = order_company_identity(order)
            if company_id:
                # One company may be referenced by uid on one order and email on another
                company_key = preferred_identifier(company_lookup.get(company_id)) or company_id
                key = (company_key, month_key(order_date(order)))
                company_months.setdefault(key, []).append(order)
                continue

            client_id = order_client_identity(order)
            if not client_id:
                result.errors.append(
                    f"Order {order_id(order)} has no client identifier and no companyUid"
                )
                continue
            client = client_lookup.get(client_id)
            if client is None:
                if client_id not in missing_clients:
                    missing_clients.add(client_id)
                    result.errors.append(f"Client {client_id} not found in client map")
                continue
            client_key = preferred_identifier(client) or client_id
            client_batches.setdefault(client_key, _ClientBatch(client=client)).orders.append(order)

        logger.info(
            f"Grouped orders: {len(client_batches)} clients, "
            f"{len({company for company, _ in company_months})} companies"
        )

        units: list[tuple[str, Callable[[], Awaitable[_UnitOutcome]]]] = []
        for client_key, batch in client_batches.items():
            units.append(
                ("client", lambda k=client_key, b=batch: self._invoice_client(k, b))
            )

        for (company_id, key), month_orders in company_months.items():
            company = company_lookup.get(company_id)
            if company is None and isinstance(month_orders[0].get("company"), dict):
                company = month_orders[0]["company"]
            if company is None:
                result.errors.append(f"Company {company_id} not found in company map or order data")
                continue
            units.append(
                (
                    "company",
                    lambda c=company_id, k=key, o=month_orders, co=company: self._invoice_company_month(
                        c, k, o, co
                    ),
                )
            )

        outcomes = await self._fan_out([unit for _kind, unit in units])
        for (kind, _unit), outcome in zip(units, outcomes, strict=True):
            if kind == "client":
                result.client_invoices_created += outcome.created
            else:
                result.company_invoices_created += outcome.created
            result.errors.extend(outcome.errors)

        if result.errors:
            invoicing_batch_errors_total.labels(job="backfill").inc(len(result.errors))

        logger.info(
            f"Invoice generation completed: {result.client_invoices_created} client invoices, "
            f"{result.company_invoices_created} company invoices, {len(result.errors)} errors"
        )
        for error in result.errors[:10]:
            logger.warning(f"Backfill error: {error}")
        if len(result.errors) > 10:
            logger.warning(f"... and {len(result.errors) - 10} more errors")
        return result

    async def process_all_client_invoices(self) -> int:
        """Run the idempotent client batch for every client.

        Returns:
            Total number of invoices created
        """
        clients = await self.directory.all_clients()
        identities = [
            identity
            for client in clients
            if (identity := client.get("email") or client.get("uid") or client.get("id"))
        ]

        async def unit(identity: str) -> int:
            try:
                return len(await self.client_generator.process_client_orders(identity))
            except Exception:
                logger.exception(f"Error processing client {identity}")
                invoicing_batch_errors_total.labels(job="client_orders").inc()
                return 0

        counts = await self._fan_out([lambda i=identity: unit(i) for identity in identities])
        return sum(counts)

    async def process_all_company_monthly_invoices(self, month: date) -> MonthlyRunResult:
        """Invoice every company for ``month``.

        Returns:
            MonthlyRunResult with the number created and per-company errors
        """
        result = MonthlyRunResult(month_name=month_name(month))
        companies = await self.directory.all_companies()
        identities = [
            identity for company in companies if (identity := preferred_identifier(company))
        ]

        async def unit(identity: str) -> _UnitOutcome:
            try:
                invoice_id = await self.monthly_aggregator.process_company_monthly_invoices(
                    identity, month
                )
            except Exception as e:
                message = f"Error processing company {identity}: {e}"
                logger.exception(message)
                return _UnitOutcome(errors=[message])
            return _UnitOutcome(created=1 if invoice_id else 0)

        for outcome in await self._fan_out([lambda i=identity: unit(i) for identity in identities]):
            result.invoices_created += outcome.created
            result.errors.extend(outcome.errors)

        if result.errors:
            invoicing_batch_errors_total.labels(job="monthly").inc(len(result.errors))
        logger.info(
            f"Monthly invoicing for {result.month_name}: {result.invoices_created} created, "
            f"{len(result.errors)} errors"
        )
        return result
