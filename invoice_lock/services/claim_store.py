"""Claim store: transaction-scoped access to the ``invoices`` table.

Every claim attempt runs in its own session and transaction:

  1. Take a non-blocking exclusive claim on the row (``id = ? AND pending``).
  2. Await the caller's body with the locked invoice.
  3. Write ``pending = false`` and commit.

Claiming strategy (dialect-aware):
  PostgreSQL: ``SELECT … FOR UPDATE NOWAIT``.  A row locked by another
              transaction raises SQLSTATE 55P03 immediately.
  SQLite:     no row locks.  A guard ``UPDATE … SET pending = pending`` takes
              the database write lock; with ``busy_timeout=0`` a competing
              writer gets "database is locked" immediately.

Lock contention is returned as ``"contended"``, a missing/already-billed row as
``"already_handled"``.  Anything raised by the body or by the completion write
rolls the transaction back and propagates to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone

from sqlalchemy import select, text, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from invoice_lock.config import Settings
from invoice_lock.db.models import Invoice
from invoice_lock.schemas.claims import ClaimResult

logger = logging.getLogger("invoice_lock.services.claim_store")

ClaimBody = Callable[[Invoice], Awaitable[None]]

_PG_LOCK_NOT_AVAILABLE = "55P03"
_SQLITE_BUSY = 5
_SQLITE_LOCKED = 6


def is_lock_unavailable(exc: BaseException) -> bool:
    """Return True if *exc* means another transaction holds the lock.

    Accepts a SQLAlchemy ``DBAPIError`` or a raw driver exception.  The driver
    error and its ``__cause__`` are both checked because async adapters wrap
    the native exception.
    """
    orig = getattr(exc, "orig", None) or exc
    for err in (orig, orig.__cause__):
        if err is None:
            continue
        code = getattr(err, "sqlstate", None) or getattr(err, "pgcode", None)
        if code == _PG_LOCK_NOT_AVAILABLE:
            return True
        sqlite_code = getattr(err, "sqlite_errorcode", None)
        if isinstance(sqlite_code, int) and sqlite_code & 0xFF in (_SQLITE_BUSY, _SQLITE_LOCKED):
            return True
        if "database is locked" in str(err) or "database table is locked" in str(err):
            return True
    return False


class ClaimStore:
    """Store adapter owning no connection state beyond its session factory."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        dialect: str = "sqlite",
        claim_transaction_timeout: float | None = None,
    ):
        if dialect not in ("postgres", "sqlite"):
            raise ValueError(f"Unsupported dialect: {dialect!r}")
        self._session_factory = session_factory
        self.dialect = dialect
        self.claim_transaction_timeout = claim_transaction_timeout

    @classmethod
    def from_settings(
        cls,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
    ) -> "ClaimStore":
        return cls(
            session_factory,
            dialect=settings.INVOICE_DB_DIALECT,
            claim_transaction_timeout=settings.CLAIM_TRANSACTION_TIMEOUT_SECONDS,
        )

    async def list_eligible_ids(self) -> list[int]:
        """Snapshot of pending invoice ids.  Not locked; may be stale on return."""
        async with self._session_factory() as db:
            result = await db.execute(
                select(Invoice.id).where(Invoice.pending.is_(True)).order_by(Invoice.id)
            )
            return list(result.scalars().all())

    async def claim_and_run(self, invoice_id: int, body: ClaimBody) -> ClaimResult:
        """Claim *invoice_id*, await *body* with it, then mark it sent.

        Returns ``"contended"`` or ``"already_handled"`` without running the
        body when the claim cannot be taken.  Exceptions from the body or the
        completion write are re-raised after rollback.
        """
        async with self._session_factory() as db:
            try:
                await self._bound_transaction(db)
                invoice = await self._lock_invoice(db, invoice_id)
            except DBAPIError as exc:
                await db.rollback()
                if is_lock_unavailable(exc):
                    logger.debug("Invoice %s is locked by another transaction", invoice_id)
                    return "contended"
                raise

            if invoice is None:
                await db.rollback()
                return "already_handled"

            try:
                await body(invoice)
            except Exception:
                await db.rollback()
                raise

            try:
                await self._mark_sent(db, invoice_id)
                await db.commit()
            except Exception:
                logger.warning(
                    "Invoice %s was billed but could not be marked sent; "
                    "it stays pending and may be billed again on a later pass",
                    invoice_id,
                )
                await db.rollback()
                raise

        return "sent"

    # ── Helpers ────────────────────────────────────────────────

    async def _bound_transaction(self, db: AsyncSession) -> None:
        if self.dialect != "postgres" or not self.claim_transaction_timeout:
            return
        timeout_ms = int(self.claim_transaction_timeout * 1000)
        await db.execute(text(f"SET LOCAL idle_in_transaction_session_timeout = {timeout_ms}"))

    async def _lock_invoice(self, db: AsyncSession, invoice_id: int) -> Invoice | None:
        if self.dialect == "postgres":
            result = await db.execute(
                select(Invoice)
                .where(Invoice.id == invoice_id, Invoice.pending.is_(True))
                .with_for_update(nowait=True)
            )
            return result.scalar_one_or_none()

        guard = await db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id, Invoice.pending.is_(True))
            .values(pending=Invoice.pending)
            .execution_options(synchronize_session=False)
        )
        if guard.rowcount != 1:
            return None
        result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
        return result.scalar_one()

    async def _mark_sent(self, db: AsyncSession, invoice_id: int) -> None:
        await db.execute(
            update(Invoice)
            .where(Invoice.id == invoice_id)
            .values(pending=False, sent_at=datetime.now(timezone.utc))
            .execution_options(synchronize_session=False)
        )
