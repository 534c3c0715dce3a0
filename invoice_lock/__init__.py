"""Bill pending invoices from many uncoordinated workers, one claim per row."""

__version__ = "0.1.0"
