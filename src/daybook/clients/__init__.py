"""Clients for external services."""

from daybook.clients.backend import BackendAPIClient, Page, PaymentReceipt

__all__ = ["BackendAPIClient", "Page", "PaymentReceipt"]
