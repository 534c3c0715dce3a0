"""Billing worker package.

A worker performs one batch pass over the ``invoices`` table and exits; an
external scheduler (cron, a Kubernetes CronJob, …) runs it periodically:

    python -m invoice_lock.worker
    WORKER_ID=w1 python -m invoice_lock.worker

Several workers may run at once against the same database.  Each invoice is
claimed with a non-blocking row lock, so exactly one worker bills it:
- SELECT … FOR UPDATE NOWAIT for PostgreSQL.
- A guard write under the database lock for SQLite (busy_timeout=0).
"""
