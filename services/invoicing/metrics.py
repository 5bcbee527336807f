"""Prometheus metrics for invoice generation and reconciliation.

Based on Prometheus best practices:
https://prometheus.io/docs/practices/naming/
"""

from prometheus_client import Counter

invoices_created_total = Counter(
    "invoices_created_total",
    "Total invoices written",
    ["type"],  # Client, Company Monthly Invoice
)

invoice_number_fallbacks_total = Counter(
    "invoice_number_fallbacks_total",
    "Invoice numbers derived from the clock instead of a verified random draw",
    ["reason"],  # exhausted, store_error
)

duplicate_invoices_deleted_total = Counter(
    "duplicate_invoices_deleted_total",
    "Total duplicate monthly invoices deleted by reconciliation",
)

invoicing_batch_errors_total = Counter(
    "invoicing_batch_errors_total",
    "Per-entity failures recorded by batch jobs",
    ["job"],  # client_orders, backfill, monthly, reconcile
)
