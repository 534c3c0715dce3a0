"""Shared fixtures for invoice_lock tests."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from invoice_lock.config import Settings
from invoice_lock.db.engine import build_engine, build_session_factory, create_tables
from invoice_lock.db.models import Invoice
from invoice_lock.exceptions import BillingError
from invoice_lock.services.claim_store import ClaimStore
from invoice_lock.utils.metrics import metrics
from invoice_lock.worker.enqueue import create_pending_invoice


# ── Billing stand-in ────────────────────────────────────────────


class FakeBilling:
    """Records every send; optionally fails or parks specific invoices."""

    def __init__(self, fail_ids: set[int] | None = None):
        self.calls: list[int] = []
        self.fail_ids = fail_ids or set()
        # invoice_id -> (entered, release) events used to hold a claim open
        self.gates: dict[int, tuple[asyncio.Event, asyncio.Event]] = {}
        self.closed = False

    def hold(self, invoice_id: int) -> tuple[asyncio.Event, asyncio.Event]:
        gate = (asyncio.Event(), asyncio.Event())
        self.gates[invoice_id] = gate
        return gate

    async def send(self, invoice: Invoice) -> None:
        self.calls.append(invoice.id)
        gate = self.gates.get(invoice.id)
        if gate is not None:
            entered, release = gate
            entered.set()
            await release.wait()
        await asyncio.sleep(0)
        if invoice.id in self.fail_ids:
            raise BillingError(invoice.id, "HTTP 502")

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def fake_billing() -> FakeBilling:
    return FakeBilling()


@pytest.fixture
def make_billing():
    return FakeBilling


# ── Row-locking store stand-in ──────────────────────────────────


class RowLockStore:
    """In-memory store with per-row, non-blocking exclusive locks.

    Mirrors ``ClaimStore`` on a database with row-level locking (PostgreSQL),
    which SQLite's database-wide write lock cannot reproduce.
    """

    def __init__(self, invoice_ids: list[int]):
        self.pending = {i: True for i in invoice_ids}
        self.locks = {i: asyncio.Lock() for i in invoice_ids}

    async def list_eligible_ids(self) -> list[int]:
        await asyncio.sleep(0)
        return sorted(i for i, pending in self.pending.items() if pending)

    async def claim_and_run(self, invoice_id, body):
        lock = self.locks.get(invoice_id)
        if lock is None:
            return "already_handled"
        if lock.locked():
            return "contended"
        async with lock:
            if not self.pending[invoice_id]:
                return "already_handled"
            await body(Invoice(id=invoice_id, pending=True))
            self.pending[invoice_id] = False
        return "sent"


@pytest.fixture
def row_lock_store():
    return RowLockStore


# ── SQLite database per test ────────────────────────────────────


@dataclass
class SqliteDb:
    settings: Settings
    engine: AsyncEngine
    factory: async_sessionmaker[AsyncSession]
    _extra_engines: list[AsyncEngine] = field(default_factory=list)

    def store(self) -> ClaimStore:
        return ClaimStore.from_settings(self.factory, self.settings)

    def worker_store(self) -> ClaimStore:
        """A store on its own engine, as a second worker process would have."""
        engine = build_engine(self.settings)
        self._extra_engines.append(engine)
        return ClaimStore.from_settings(build_session_factory(engine), self.settings)

    async def seed(self, count: int) -> list[int]:
        async with self.factory() as db:
            invoices = [create_pending_invoice(db) for _ in range(count)]
            await db.commit()
            return [invoice.id for invoice in invoices]

    async def pending_ids(self) -> list[int]:
        async with self.factory() as db:
            result = await db.execute(
                select(Invoice.id).where(Invoice.pending.is_(True)).order_by(Invoice.id)
            )
            return list(result.scalars().all())

    async def get(self, invoice_id: int) -> Invoice:
        async with self.factory() as db:
            result = await db.execute(select(Invoice).where(Invoice.id == invoice_id))
            return result.scalar_one()

    async def dispose(self) -> None:
        for engine in self._extra_engines:
            await engine.dispose()
        await self.engine.dispose()


@pytest_asyncio.fixture
async def sqlite_db(tmp_path):
    settings = Settings(INVOICE_DB_URL=f"sqlite+aiosqlite:///{tmp_path / 'invoices.db'}")
    engine = build_engine(settings)
    await create_tables(engine)
    db = SqliteDb(settings, engine, build_session_factory(engine))
    yield db
    await db.dispose()


@pytest.fixture(autouse=True)
def _reset_metrics():
    metrics.reset()
    yield
    metrics.reset()
