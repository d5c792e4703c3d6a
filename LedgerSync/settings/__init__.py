"""
Settings package: configuration API and localization helpers.

This package provides:

- :mod:`LedgerSync.settings.lib` – Core settings management and schema validation.
- :mod:`LedgerSync.settings.locale` – Localization utilities for display dates, timestamps and amounts.
"""
