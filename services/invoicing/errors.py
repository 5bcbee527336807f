"""Invoicing error types."""


class InvoicingError(Exception):
    """Base class for invoicing failures."""


class ClientNotFoundError(InvoicingError):
    """No client record matches the given identity."""


class CompanyNotFoundError(InvoicingError):
    """No company record matches the given identity."""
