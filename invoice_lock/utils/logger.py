"""Root logger setup with optional JSON output carrying correlation fields."""

import contextvars
import logging
import sys

from pythonjsonlogger import jsonlogger

# Context variables for correlation
ctx_invoice_id = contextvars.ContextVar("invoice_id", default=None)
ctx_worker_id = contextvars.ContextVar("worker_id", default=None)

_CONTEXT_FIELDS = (ctx_invoice_id, ctx_worker_id)


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        for var in _CONTEXT_FIELDS:
            value = var.get()
            if value is not None:
                log_record[var.name] = value


def setup_logger(log_format: str = "text", log_level: str = "INFO"):
    """Configure the root logger."""
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={"levelname": "level", "asctime": "timestamp"}
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)
    root_logger.setLevel(getattr(logging, log_level.upper(), logging.INFO))

    # Silence third-party noise; SQL echo is controlled by DB_ECHO instead
    for name in ("httpx", "httpcore", "sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger
