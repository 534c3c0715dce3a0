"""Exception types raised across the package."""

from __future__ import annotations


class InvoiceLockError(Exception):
    """Base class for errors raised by invoice_lock."""


class BillingError(InvoiceLockError):
    def __init__(self, invoice_id: int, message: str):
        self.invoice_id = invoice_id
        super().__init__(f"Billing invoice {invoice_id} failed: {message}")


class ClaimStoreError(InvoiceLockError):
    """A store or transaction error that is not lock contention."""

    def __init__(self, invoice_id: int, message: str):
        self.invoice_id = invoice_id
        super().__init__(f"Claim transaction for invoice {invoice_id} failed: {message}")
