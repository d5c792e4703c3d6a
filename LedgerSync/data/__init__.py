"""
LedgerSync data package: derived views.

This package provides:

- :mod:`LedgerSync.data.data` – Month summary, per-day and today's transactions, monthly totals and savings progress, computed with pandas.
"""
