"""
Core package for LedgerSync providing the ledger and its synchronization.

This package includes:

- :mod:`LedgerSync.core.models` – Transactions, category lists, the savings challenge and input validation.
- :mod:`LedgerSync.core.database` – Local SQLite store of the working copy.
- :mod:`LedgerSync.core.tables` – Row codecs of the remote spreadsheet tables, including legacy row detection.
- :mod:`LedgerSync.core.auth` – Google credentials for the spreadsheet backend.
- :mod:`LedgerSync.core.service` – Remote store adapter over the Google Sheets API.
- :mod:`LedgerSync.core.endpoint` – HTTP endpoint serving the remote store.
- :mod:`LedgerSync.core.client` – HTTP client of the remote sync endpoint.
- :mod:`LedgerSync.core.sync` – Pull-on-startup and push-on-mutation orchestration.
"""
