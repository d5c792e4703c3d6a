"""Remote store adapter over the Google Sheets API.

:class:`SheetsStore` mirrors the ledger state into three worksheets. Reads are
best-effort per field (see :mod:`.tables`), writes replace the body of every
worksheet with the full state. Concurrent requests in one process are serialized
with a lock acquired with a bounded wait.
"""

import contextlib
import datetime
import logging
import socket
import ssl
import threading
from typing import Any, Dict, Iterator, List, Optional

import google.auth.exceptions
from PySide6 import QtCore
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from . import models
from . import tables
from .auth import auth_manager
from ..settings import lib
from ..settings import locale
from ..status import status

# Cached Sheets API client to avoid repeated discovery/auth costs
_cached_service: Any = None

# Serializes reads and writes of the remote store
_store_lock = threading.Lock()

DEFAULT_ROW_COUNT: int = 1000


def clear_service() -> None:
    """
    Clears the cached Sheets API client.
    """
    global _cached_service

    try:
        if _cached_service:
            _cached_service.close()
    except Exception as ex:
        logging.debug(f'Failed closing cached Sheets service client: {ex}')

    _cached_service = None
    auth_manager.clear()


def get_service() -> Any:
    """
    Builds (or returns cached) Google Sheets service client.

    Returns:
        The Sheets API Resource, reusing a single client per process.

    Raises:
        status.ServiceUnavailableException: If the client cannot be built.
    """
    global _cached_service
    if _cached_service is not None:
        return _cached_service

    creds: Any = auth_manager.get_valid_credentials()
    try:
        service: Any = build('sheets', 'v4', credentials=creds, cache_discovery=False)
    except (HttpError, google.auth.exceptions.GoogleAuthError, OSError) as ex:
        raise status.ServiceUnavailableException(f'Could not create the Sheets client: {ex}') from ex

    logging.debug('Google Sheets service client created successfully.')
    _cached_service = service
    return service


@QtCore.Slot(str)
def _reset_cached_service(section: str) -> None:
    """Clear the cached Sheets client when the spreadsheet credentials change."""
    if section == 'spreadsheet':
        logging.debug('Clearing cached Sheets service client due to spreadsheet settings change')
        clear_service()


def idx_to_col(idx: int) -> str:
    """Convert zero-based column index to spreadsheet letter(s).

    Args:
        idx: The zero-based column index.

    Returns:
        The spreadsheet column letter(s) (e.g., A, B, AA).
    """
    letters = ''
    while idx >= 0:
        letters = chr((idx % 26) + ord('A')) + letters
        idx = idx // 26 - 1
    return letters


def quote_title(title: str) -> str:
    """Quote a worksheet title for use in A1 notation."""
    return "'" + title.replace("'", "''") + "'"


def table_range(table: tables.Table, start_row: int = 1, rows: Optional[int] = None) -> str:
    """Return the A1 range of a table, open ended unless a row count is given.

    Args:
        table: The table.
        start_row: One-based first row.
        rows: Number of rows. The range runs to the last row when None.
    """
    last_col = idx_to_col(len(tables.HEADERS[table]) - 1)
    end_row = '' if rows is None else str(start_row + rows - 1)
    return f'{quote_title(table.value)}!A{start_row}:{last_col}{end_row}'


def _execute(request: Any, what: str) -> Dict[str, Any]:
    """Execute an API request, translating transport errors.

    Raises:
        status.ServiceUnavailableException: On HTTP, timeout, SSL or credential errors.
    """
    try:
        return request.execute() or {}
    except HttpError as ex:
        stat: Optional[int] = ex.resp.status if ex.resp else None
        raise status.ServiceUnavailableException(f'Error {what} (HTTP {stat}): {ex}') from ex
    except socket.timeout as ex:
        raise status.ServiceUnavailableException(f'Timeout error {what}: {ex}') from ex
    except ssl.SSLError as ex:
        raise status.ServiceUnavailableException(f'SSL error {what}: {ex}') from ex
    except google.auth.exceptions.TransportError as ex:
        raise status.ServiceUnavailableException(f'Transport error {what}: {ex}') from ex


class SheetsStore:
    """Reads and writes the ledger state in a Google spreadsheet.

    Args:
        spreadsheet_id: Spreadsheet to use. Defaults to the ``spreadsheet.id`` setting.
        service: Sheets API resource. Defaults to the cached client of :func:`get_service`.
        lock_timeout: Seconds to wait for the store lock. Defaults to the ``remote.lock_timeout`` setting.
    """

    def __init__(
            self,
            spreadsheet_id: Optional[str] = None,
            service: Any = None,
            lock_timeout: Optional[float] = None,
    ) -> None:
        self._spreadsheet_id = spreadsheet_id
        self._service = service
        self._lock_timeout = lock_timeout

    @property
    def spreadsheet_id(self) -> str:
        spreadsheet_id = self._spreadsheet_id or lib.settings.get_section('spreadsheet').get('id', '')
        if not spreadsheet_id:
            raise status.SpreadsheetIdNotConfiguredException
        return spreadsheet_id

    @property
    def service(self) -> Any:
        return self._service if self._service is not None else get_service()

    @property
    def lock_timeout(self) -> float:
        return self._lock_timeout if self._lock_timeout is not None else lib.settings.lock_timeout

    @property
    def tz(self) -> datetime.tzinfo:
        return locale.get_tzinfo(lib.settings['timezone'])

    @property
    def locale_name(self) -> str:
        return lib.settings['locale']

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the store lock for the duration of the block.

        Raises:
            status.LockTimeoutException: If the lock is not acquired within the timeout.
        """
        logging.debug(f'Waiting up to {self.lock_timeout}s for the remote store lock.')
        if not _store_lock.acquire(timeout=self.lock_timeout):
            raise status.LockTimeoutException(f'Waited {self.lock_timeout} seconds.')
        try:
            yield
        finally:
            _store_lock.release()

    def _sheet_properties(self) -> Dict[str, Dict[str, Any]]:
        """Return the properties of every worksheet keyed by title."""
        result = _execute(
            self.service.spreadsheets().get(
                spreadsheetId=self.spreadsheet_id,
                fields='sheets(properties(sheetId,title,gridProperties(rowCount,columnCount)))'
            ),
            f'accessing spreadsheet "{self.spreadsheet_id}"'
        )
        return {
            s['properties']['title']: s['properties']
            for s in result.get('sheets', []) if 'properties' in s
        }

    def _batch_update(self, requests: List[Dict[str, Any]], what: str) -> Dict[str, Any]:
        return _execute(
            self.service.spreadsheets().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'requests': requests}
            ),
            what
        )

    def _write_headers(self, headers: Dict[tables.Table, List[str]]) -> None:
        data = [
            {'range': table_range(table, 1, 1), 'values': [header]}
            for table, header in headers.items()
        ]
        _execute(
            self.service.spreadsheets().values().batchUpdate(
                spreadsheetId=self.spreadsheet_id,
                body={'valueInputOption': 'RAW', 'data': data}
            ),
            'writing headers'
        )

    def ensure_tables(self) -> Dict[tables.Table, Dict[str, Any]]:
        """Create missing worksheets and extend a transaction table narrower than the schema.

        A new worksheet gets the canonical header. The header of an extended table is
        only rewritten when its first cell is not the schema's first column name.

        Returns:
            dict: The worksheet properties of each table.
        """
        props = self._sheet_properties()

        missing = [t for t in tables.Table if t.value not in props]
        if missing:
            logging.info(f'Creating worksheets: {", ".join(t.value for t in missing)}')
            requests = [
                {'addSheet': {'properties': {
                    'title': t.value,
                    'gridProperties': {'rowCount': DEFAULT_ROW_COUNT, 'columnCount': len(tables.HEADERS[t])},
                }}}
                for t in missing
            ]
            reply = self._batch_update(requests, 'creating worksheets')
            for r in reply.get('replies', []):
                p = r.get('addSheet', {}).get('properties', {})
                if p:
                    props[p['title']] = p
            self._write_headers({t: tables.HEADERS[t] for t in missing})

        table = tables.Table.Transactions
        p = props[table.value]
        column_count = p.get('gridProperties', {}).get('columnCount', 0)
        if column_count < tables.TRANSACTION_COLUMNS:
            logging.info(f'Extending "{table.value}" from {column_count} to {tables.TRANSACTION_COLUMNS} columns.')
            self._batch_update([{'appendDimension': {
                'sheetId': p['sheetId'],
                'dimension': 'COLUMNS',
                'length': tables.TRANSACTION_COLUMNS - column_count,
            }}], f'extending "{table.value}"')
            p.setdefault('gridProperties', {})['columnCount'] = tables.TRANSACTION_COLUMNS

            result = _execute(
                self.service.spreadsheets().values().get(
                    spreadsheetId=self.spreadsheet_id,
                    range=f'{quote_title(table.value)}!A1'
                ),
                f'reading the header of "{table.value}"'
            )
            first_cell = next(iter(next(iter(result.get('values', [])), [])), '')
            if first_cell != tables.HEADERS[table][0]:
                logging.info(f'Rewriting the header of "{table.value}".')
                self._write_headers({table: tables.HEADERS[table]})

        return {t: props[t.value] for t in tables.Table}

    def read(self) -> models.LedgerState:
        """Read the full ledger state.

        Returns:
            models.LedgerState: A new state. Nothing is modified when reading fails.

        Raises:
            status.LockTimeoutException, status.ServiceUnavailableException,
            status.SpreadsheetIdNotConfiguredException
        """
        with self.locked():
            self.ensure_tables()
            order = [tables.Table.Categories, tables.Table.Transactions, tables.Table.Savings]
            result = _execute(
                self.service.spreadsheets().values().batchGet(
                    spreadsheetId=self.spreadsheet_id,
                    ranges=[table_range(t) for t in order],
                    valueRenderOption='FORMATTED_VALUE',
                    majorDimension='ROWS',
                ),
                'reading the remote store'
            )

        value_ranges = result.get('valueRanges', [])
        values: Dict[tables.Table, List[List[Any]]] = {
            t: (value_ranges[i].get('values', []) if i < len(value_ranges) else [])
            for i, t in enumerate(order)
        }

        expense, income = tables.parse_category_rows(values[tables.Table.Categories][1:])
        transaction_values = values[tables.Table.Transactions]
        transactions = tables.parse_transaction_rows(
            transaction_values[1:],
            self.tz,
            locale_name=self.locale_name,
            width=tables.transaction_table_width(transaction_values),
        )
        days = tables.parse_savings_rows(values[tables.Table.Savings][1:], self.locale_name)

        logging.debug(
            f'Read {len(transactions)} transactions, {len(expense) + len(income)} categories '
            f'and {len(days)} completed days.'
        )
        return models.LedgerState(
            transactions=transactions,
            expense_categories=expense,
            income_categories=income,
            savings=models.SavingsState(days),
        )

    def _format_requests(
            self,
            props: Dict[tables.Table, Dict[str, Any]],
            rows: Dict[tables.Table, List[List[Any]]],
    ) -> List[Dict[str, Any]]:
        """Build the grid and number format requests for the rows about to be written.

        Text columns get the plain text format and date columns their display
        pattern, both applied to the target rows before the values are written.
        """
        requests: List[Dict[str, Any]] = []
        for table, table_rows in rows.items():
            if not table_rows:
                continue
            p = props[table]
            sheet_id = p['sheetId']
            needed = len(table_rows) + 1
            row_count = p.get('gridProperties', {}).get('rowCount', 0)
            if row_count < needed:
                requests.append({'appendDimension': {
                    'sheetId': sheet_id, 'dimension': 'ROWS', 'length': needed - row_count,
                }})

            formats = {c: {'type': 'TEXT', 'pattern': '@'} for c in tables.TEXT_COLUMNS[table]}
            formats.update(tables.DATE_COLUMNS[table])
            for column, number_format in sorted(formats.items()):
                requests.append({'repeatCell': {
                    'range': {
                        'sheetId': sheet_id,
                        'startRowIndex': 1,
                        'endRowIndex': needed,
                        'startColumnIndex': column,
                        'endColumnIndex': column + 1,
                    },
                    'cell': {'userEnteredFormat': {'numberFormat': number_format}},
                    'fields': 'userEnteredFormat.numberFormat',
                }})
        return requests

    def write(self, state: models.LedgerState) -> None:
        """Replace the body of every table with the given state.

        An empty collection leaves its table with the header only.

        Raises:
            status.LockTimeoutException, status.ServiceUnavailableException,
            status.SpreadsheetIdNotConfiguredException
        """
        tz = self.tz
        rows: Dict[tables.Table, List[List[Any]]] = {
            tables.Table.Categories: tables.format_category_rows(
                state.expense_categories, state.income_categories),
            tables.Table.Transactions: tables.format_transaction_rows(state.transactions, tz),
            tables.Table.Savings: tables.format_savings_rows(state.savings, tz),
        }

        with self.locked():
            props = self.ensure_tables()

            _execute(
                self.service.spreadsheets().values().batchClear(
                    spreadsheetId=self.spreadsheet_id,
                    body={'ranges': [table_range(t, start_row=2) for t in tables.Table]}
                ),
                'clearing the remote store'
            )

            requests = self._format_requests(props, rows)
            if requests:
                self._batch_update(requests, 'formatting the remote store')

            data = [
                {'range': table_range(t, 2, len(r)), 'values': r}
                for t, r in rows.items() if r
            ]
            if data:
                _execute(
                    self.service.spreadsheets().values().batchUpdate(
                        spreadsheetId=self.spreadsheet_id,
                        body={'valueInputOption': 'USER_ENTERED', 'data': data}
                    ),
                    'writing the remote store'
                )

        logging.debug(
            f'Wrote {len(rows[tables.Table.Transactions])} transactions, '
            f'{len(rows[tables.Table.Categories])} categories and '
            f'{len(rows[tables.Table.Savings])} completed days.'
        )


def _connect_signals() -> None:
    from ..signals import signals
    signals.configSectionChanged.connect(_reset_cached_service)


_connect_signals()
