"""Claim manager: claim one invoice, bill it, classify what happened."""

from __future__ import annotations

import logging

from sqlalchemy.exc import SQLAlchemyError

from invoice_lock.connectors.billing_client import BillingClient
from invoice_lock.db.models import Invoice
from invoice_lock.exceptions import BillingError, ClaimStoreError
from invoice_lock.schemas.claims import ClaimOutcome
from invoice_lock.services.claim_store import ClaimStore
from invoice_lock.utils.logger import ctx_invoice_id
from invoice_lock.utils.metrics import record_claim_outcome

logger = logging.getLogger("invoice_lock.services.claim")


class ClaimManager:
    """Runs the claim transaction for a single invoice.

    The billing call happens inside the claim transaction: after the row is
    locked and before ``pending = false`` is committed.  Contention and
    already-billed rows come back as ordinary outcomes; every other error is
    reported as ``failed`` with the invoice left pending.

    Residual risk: if billing succeeds and the commit then fails, the invoice
    stays pending and will be billed again on a later pass.
    """

    def __init__(self, store: ClaimStore, billing: BillingClient):
        self.store = store
        self.billing = billing

    async def claim_and_bill(self, invoice_id: int) -> ClaimOutcome:
        token = ctx_invoice_id.set(invoice_id)
        try:
            outcome = await self._claim_and_bill(invoice_id)
        finally:
            ctx_invoice_id.reset(token)
        record_claim_outcome(outcome.status)
        return outcome

    async def _claim_and_bill(self, invoice_id: int) -> ClaimOutcome:
        try:
            result = await self.store.claim_and_run(invoice_id, self._bill)
        except BillingError as exc:
            logger.error("Invoice %s not billed, left pending: %s", invoice_id, exc)
            return ClaimOutcome(invoice_id, "failed", failure_kind="billing", error=exc)
        except SQLAlchemyError as exc:
            error = ClaimStoreError(invoice_id, f"{type(exc).__name__}: {exc}")
            error.__cause__ = exc
            logger.exception("Invoice %s claim transaction failed, left pending", invoice_id)
            return ClaimOutcome(invoice_id, "failed", failure_kind="store", error=error)
        except Exception as exc:
            # Unclassified errors from the billing body (malformed data etc.)
            logger.exception("Invoice %s failed with unexpected error, left pending", invoice_id)
            return ClaimOutcome(invoice_id, "failed", failure_kind="billing", error=exc)

        if result == "contended":
            logger.info("Invoice %s is being handled by another worker, skipping", invoice_id)
        elif result == "already_handled":
            logger.debug("Invoice %s is no longer pending", invoice_id)
        return ClaimOutcome(invoice_id, result)

    async def _bill(self, invoice: Invoice) -> None:
        await self.billing.send(invoice)
