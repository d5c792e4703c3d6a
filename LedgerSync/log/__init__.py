"""
Logging subsystem: handlers for application logging.

Modules:

- :mod:`LedgerSync.log.log` – Log handler integrating with Python logging and Qt's message handler.
"""
