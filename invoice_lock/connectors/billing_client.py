"""Billing endpoint HTTP connector."""

from __future__ import annotations

import logging
import time

import httpx

from invoice_lock.config import Settings
from invoice_lock.db.models import Invoice
from invoice_lock.exceptions import BillingError
from invoice_lock.utils.metrics import record_billing_call

logger = logging.getLogger("invoice_lock.connectors.billing")


class BillingClient:
    """
    Bills one invoice against the external billing API.

    Protocol contract:
      POST {base_url}/invoices/{invoice_id}/bill
      Body: {"invoice_id": 123}
      Response: any 2xx means the customer has been billed.

    The endpoint has no idempotency key, so every successful call is a real
    charge.  No retries happen here; failures surface as ``BillingError``.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            headers=headers,
            transport=transport,
        )

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> "BillingClient":
        return cls(
            settings.BILLING_API_URL,
            api_key=settings.BILLING_API_KEY,
            timeout=settings.BILLING_TIMEOUT_SECONDS,
            transport=transport,
        )

    async def send(self, invoice: Invoice) -> None:
        """Bill *invoice*.  Returns on success, raises ``BillingError`` otherwise."""
        logger.info("Sending invoice %s...", invoice.id)
        started = time.monotonic()
        try:
            resp = await self._client.post(
                f"/invoices/{invoice.id}/bill",
                json={"invoice_id": invoice.id},
                headers={"X-Invoice-ID": str(invoice.id)},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            record_billing_call(time.monotonic() - started, success=False)
            raise BillingError(invoice.id, f"HTTP {exc.response.status_code}") from exc
        except httpx.RequestError as exc:
            record_billing_call(time.monotonic() - started, success=False)
            raise BillingError(invoice.id, f"{type(exc).__name__}: {exc}") from exc

        record_billing_call(time.monotonic() - started, success=True)
        logger.info("Invoice %s sent!", invoice.id)

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "BillingClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()
