"""Newest-first, cursor-paginated explorer over ledger messages with on-demand backfill."""

__version__ = "1.0.0"
