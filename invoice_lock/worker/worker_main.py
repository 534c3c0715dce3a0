"""Worker process entrypoint.

Run one batch pass (typically from cron):

    python -m invoice_lock.worker

    # With a custom worker ID:
    WORKER_ID=worker-1 python -m invoice_lock.worker

The worker will:
1. Load invoice_lock.config.settings (honours .env file)
2. Build the engine, claim store, billing client and batch coordinator
3. Bill every invoice that is pending at scan time
4. Exit 1 if any invoice failed so the scheduler reports it, else 0
"""

from __future__ import annotations

import asyncio
import logging
import sys

from invoice_lock.config import Settings
from invoice_lock.connectors.billing_client import BillingClient
from invoice_lock.db.engine import build_engine, build_session_factory
from invoice_lock.schemas.claims import BatchReport
from invoice_lock.services.claim_service import ClaimManager
from invoice_lock.services.claim_store import ClaimStore
from invoice_lock.utils.logger import setup_logger
from invoice_lock.worker.batch import BatchCoordinator

logger = logging.getLogger("invoice_lock.worker")


async def run_worker(settings: Settings, billing: BillingClient | None = None) -> BatchReport:
    """Build all components from *settings*, run one pass, release resources."""
    engine = build_engine(settings)
    billing = billing or BillingClient.from_settings(settings)
    try:
        store = ClaimStore.from_settings(build_session_factory(engine), settings)
        coordinator = BatchCoordinator(
            store,
            ClaimManager(store, billing),
            worker_id=settings.WORKER_ID,
            concurrency=settings.WORKER_CONCURRENCY,
        )
        return await coordinator.run_once()
    finally:
        await billing.close()
        await engine.dispose()


def main() -> int:
    """Worker process entrypoint."""
    from invoice_lock.config import settings

    setup_logger(log_format=settings.LOG_FORMAT, log_level=settings.LOG_LEVEL)
    logger.info(
        "Starting billing worker %s (dialect=%s)",
        settings.WORKER_ID,
        settings.INVOICE_DB_DIALECT,
    )

    report = asyncio.run(run_worker(settings))
    for failure in report.failures:
        logger.error(
            "Invoice %s failed (%s): %s", failure.invoice_id, failure.kind, failure.message
        )
    return 1 if report.failed else 0


if __name__ == "__main__":
    sys.exit(main())
