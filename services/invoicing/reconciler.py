"""Removal of duplicate monthly invoices.

Earlier versions of the monthly job matched companies on a single
identifier, so a company stamped with its uid on one invoice and its email
on another could be billed twice for the same month. The reconciler finds
those groups and keeps only the most recent invoice of each.

Grouping runs in two passes. A coarse key (preferred identifier, billing
month, month label) groups exact matches. The coarse groups are then merged
through an ``IdentityIndex`` seeded with the company records, so groups whose
invoices share any identifier, directly or through a company record that
carries both, fold into one.
"""

import logging
from dataclasses import dataclass

from services.invoicing.directory import OrderDirectory
from services.invoicing.identity import IdentityIndex, identity_keys, preferred_identifier
from services.invoicing.metrics import duplicate_invoices_deleted_total, invoicing_batch_errors_total
from services.invoicing.periods import month_key
from services.invoicing.repository import InvoiceRepository, invoice_sort_key
from services.invoicing.schema import (
    Invoice,
    InvoiceType,
    ReconciliationDetail,
    ReconciliationResult,
)

logger = logging.getLogger(__name__)


@dataclass
class DuplicateGroup:
    """Invoices for one company and month, newest first."""

    company_id: str
    month_name: str
    kept: Invoice
    duplicates: list[Invoice]


def coarse_key(invoice: Invoice) -> tuple[str, str, str]:
    return (
        preferred_identifier(invoice.company_data) or "unknown",
        month_key(invoice.created_at),
        invoice.month_name or "",
    )


def plan_duplicates(invoices: list[Invoice], index: IdentityIndex) -> list[DuplicateGroup]:
    """Group monthly invoices by resolved company and month.

    Args:
        invoices: Company monthly invoices
        index: Identity index, already linked with known company records

    Returns:
        One DuplicateGroup per company/month that has more than one invoice
    """
    coarse: dict[tuple[str, str, str], list[Invoice]] = {}
    for invoice in invoices:
        if not identity_keys(invoice.company_data):
            logger.warning(f"Invoice {invoice.id} has no company identifier, leaving it untouched")
            continue
        coarse.setdefault(coarse_key(invoice), []).append(invoice)

    merged: dict[tuple[str, str], list[Invoice]] = {}
    for members in coarse.values():
        for invoice in members:
            index.link(identity_keys(invoice.company_data))

    for (_identifier, key, _label), members in coarse.items():
        root = index.canonical(identity_keys(members[0].company_data))
        merged.setdefault((root, key), []).extend(members)

    groups: list[DuplicateGroup] = []
    for members in merged.values():
        if len(members) < 2:
            continue
        ordered = sorted(members, key=invoice_sort_key, reverse=True)
        kept = ordered[0]
        groups.append(
            DuplicateGroup(
                company_id=preferred_identifier(kept.company_data) or "unknown",
                month_name=kept.month_name or "unknown",
                kept=kept,
                duplicates=ordered[1:],
            )
        )
    return groups


class DuplicateReconciler:
    """Detects and deletes duplicate Company Monthly invoices."""

    def __init__(self, repository: InvoiceRepository, directory: OrderDirectory) -> None:
        self.repository = repository
        self.directory = directory

    async def _identity_index(self) -> IdentityIndex:
        index = IdentityIndex()
        index.link_records(await self.directory.all_companies())
        return index

    async def reconcile_monthly_invoices(self, dry_run: bool = False) -> ReconciliationResult:
        """Delete all but the most recent monthly invoice per company and month.

        Args:
            dry_run: Report the groups without deleting anything

        Returns:
            ReconciliationResult with totals, per-group details, and errors
        """
        result = ReconciliationResult()
        logger.info("Starting duplicate monthly invoice cleanup")

        try:
            invoices = await self.repository.fetch_invoices(InvoiceType.COMPANY_MONTHLY)
            index = await self._identity_index()
        except Exception as e:
            message = f"Error loading monthly invoices: {e}"
            logger.exception(message)
            result.errors.append(message)
            invoicing_batch_errors_total.labels(job="reconcile").inc()
            return result

        logger.info(f"Found {len(invoices)} monthly invoices")
        groups = plan_duplicates(invoices, index)
        result.total_duplicates = sum(len(group.duplicates) for group in groups)
        logger.info(f"Found {len(groups)} groups with duplicates")

        for group in groups:
            deleted_ids: list[str] = []
            for duplicate in group.duplicates:
                if dry_run:
                    logger.info(
                        f"Would delete invoice {duplicate.id} ({duplicate.invoice_number}) "
                        f"for company {group.company_id}, month {group.month_name}"
                    )
                    continue
                try:
                    await self.repository.delete(duplicate.id)
                except Exception as e:
                    message = f"Error deleting invoice {duplicate.id}: {e}"
                    logger.error(message)
                    result.errors.append(message)
                    continue
                deleted_ids.append(duplicate.id)
                duplicate_invoices_deleted_total.inc()
                logger.info(
                    f"Deleted duplicate invoice {duplicate.id} ({duplicate.invoice_number}) "
                    f"for company {group.company_id}, month {group.month_name}"
                )

            result.details.append(
                ReconciliationDetail(
                    company_id=group.company_id,
                    month_name=group.month_name,
                    kept_invoice_id=group.kept.id or "",
                    deleted_invoice_ids=deleted_ids,
                )
            )

        result.deleted_count = sum(len(detail.deleted_invoice_ids) for detail in result.details)
        if result.errors:
            invoicing_batch_errors_total.labels(job="reconcile").inc(len(result.errors))
        logger.info(
            f"Duplicate cleanup completed: {result.total_duplicates} found, "
            f"{result.deleted_count} deleted, {len(result.errors)} errors"
        )
        return result
