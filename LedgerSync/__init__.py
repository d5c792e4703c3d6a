"""
LedgerSync: personal expense and income ledger replicated to a Google spreadsheet.

This package provides:

- :mod:`LedgerSync.core` – Entity model, local store, the spreadsheet-backed remote store and sync orchestration.
- :mod:`LedgerSync.data` – Derived views: the calendar month summary, today's records and the savings challenge progress.
- :mod:`LedgerSync.settings` – Settings management, schema validation and localization helpers.
- :mod:`LedgerSync.log` – In-app logging.
- :mod:`LedgerSync.cli` – Command line front end.

Use :func:`LedgerSync.exec_` to run the command line front end.
"""

import sys

# Fail on Python < 3.11
if not (sys.version_info.major == 3 and sys.version_info.minor >= 11):
    raise RuntimeError('LedgerSync requires Python 3.11 or higher.')

__version__ = '0.1.0'
__license__ = 'GPL-3.0'
__description__ = 'LedgerSync: personal expense and income ledger replicated to a Google spreadsheet.'

from .log import log

log.setup_logging()


def exec_() -> None:
    """Run the command line front end and exit with its return code."""
    from . import cli
    sys.exit(cli.main())


if __name__ == '__main__':
    exec_()
