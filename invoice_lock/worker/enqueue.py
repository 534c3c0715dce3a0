"""Helper for producers that create invoices to be billed.

The invoice is NOT committed here. The caller commits, so the invoice lands
atomically with whatever else the producer writes in the same session.
"""

from __future__ import annotations

from datetime import datetime, timezone

from invoice_lock.db.models import Invoice


def create_pending_invoice(db_session) -> Invoice:
    """Add a pending Invoice to *db_session* and return it.

    Args:
        db_session: Active AsyncSession (or sync Session for tests).
    """
    invoice = Invoice(pending=True, created_at=datetime.now(timezone.utc))
    db_session.add(invoice)
    return invoice
