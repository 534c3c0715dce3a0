"""Batch pass: bill every invoice that is pending right now.

One pass:
  1. Snapshot the pending ids (``ClaimStore.list_eligible_ids``).
  2. Run ``ClaimManager.claim_and_bill`` for each id, up to *concurrency* at
     a time.  Every id is attempted; an outcome for one invoice never stops
     the others.
  3. Fold the outcomes into a ``BatchReport``.

Any number of workers may run passes at the same time; the row claim is the
only coordination between them.
"""

from __future__ import annotations

import asyncio
import logging

from invoice_lock.schemas.claims import BatchReport, ClaimOutcome
from invoice_lock.services.claim_service import ClaimManager
from invoice_lock.services.claim_store import ClaimStore
from invoice_lock.utils.logger import ctx_worker_id
from invoice_lock.utils.metrics import record_batch_completed

logger = logging.getLogger("invoice_lock.worker.batch")


class BatchCoordinator:
    def __init__(
        self,
        store: ClaimStore,
        manager: ClaimManager,
        worker_id: str | None = None,
        concurrency: int = 1,
    ):
        self.store = store
        self.manager = manager
        self.worker_id = worker_id
        self.concurrency = max(1, concurrency)

    async def run_once(self) -> BatchReport:
        """Run one batch pass and return its report."""
        token = ctx_worker_id.set(self.worker_id)
        try:
            invoice_ids = await self.store.list_eligible_ids()
            logger.info(
                "Worker %s found %d pending invoice(s)", self.worker_id, len(invoice_ids)
            )

            report = BatchReport()
            if self.concurrency == 1:
                for invoice_id in invoice_ids:
                    report.add(await self.manager.claim_and_bill(invoice_id))
            else:
                for outcome in await self._run_concurrently(invoice_ids):
                    report.add(outcome)
        finally:
            ctx_worker_id.reset(token)

        record_batch_completed(report)
        log = logger.warning if report.failed else logger.info
        log(
            "Worker %s batch done: sent=%d already_handled=%d contended=%d failed=%d",
            self.worker_id,
            report.sent,
            report.already_handled,
            report.contended,
            report.failed,
        )
        return report

    async def _run_concurrently(self, invoice_ids: list[int]) -> list[ClaimOutcome]:
        semaphore = asyncio.Semaphore(self.concurrency)

        async def _one(invoice_id: int) -> ClaimOutcome:
            async with semaphore:
                return await self.manager.claim_and_bill(invoice_id)

        return list(await asyncio.gather(*(_one(i) for i in invoice_ids)))
