"""
Local SQLite store for the ledger state.

The working copy is kept as four independently keyed JSON values in a single
key-value table. Each slice has its own loader that never fails: a missing,
unreadable or wrongly shaped value falls back to the slice's default, so a fresh
or damaged database is always a valid starting state.
"""

import enum
import json
import logging
import pathlib
import sqlite3
import time
from typing import Any, Dict, List, Optional

from . import models
from ..settings import lib
from ..status import status

TABLE_NAME: str = 'store'
DEFAULT_TIMEOUT: float = 2.0


class Key(enum.StrEnum):
    """Persisted slice keys."""
    Transactions = 'mw_transactions'
    Savings = 'mw_savings'
    ExpenseCategories = 'mw_expense_cats'
    IncomeCategories = 'mw_income_cats'


class LocalStore:
    """Durable client-side storage of the ledger state.

    Writes are synchronous and each slice is committed on its own. There is a single
    writer per session, so no locking is done beyond SQLite's own.
    """

    def __init__(self, db_path: Optional[pathlib.Path] = None, timeout: float = DEFAULT_TIMEOUT) -> None:
        """
        Args:
            db_path: Optional database path. Defaults to the path in the application settings.
            timeout: Seconds to wait on a lock held by another connection.
        """
        self._db_path = pathlib.Path(db_path) if db_path else None
        self.timeout = timeout

    @property
    def db_path(self) -> pathlib.Path:
        return self._db_path or lib.settings.db_path

    def connection(self) -> sqlite3.Connection:
        """Return a new connection to the store, creating the table if needed.

        Returns:
            sqlite3.Connection: Database connection object.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.set_progress_handler(lambda: logging.debug('Waiting on DB lock…'), 1000)
        try:
            conn.execute(f'CREATE TABLE IF NOT EXISTS {TABLE_NAME} (key TEXT PRIMARY KEY, value TEXT)')
        except sqlite3.Error:
            conn.close()
            raise
        return conn

    def _read(self, key: Key) -> Optional[Any]:
        """Read and decode a slice. Returns None if it is missing or cannot be read."""
        if not self.db_path.exists():
            return None

        conn: Optional[sqlite3.Connection] = None
        try:
            conn = self.connection()
            row = conn.execute(f'SELECT value FROM {TABLE_NAME} WHERE key=?', (key.value,)).fetchone()
        except sqlite3.Error as ex:
            logging.warning(f'Could not read "{key}" from the local store: {ex}')
            return None
        finally:
            if conn:
                conn.close()

        if row is None or row[0] is None:
            return None

        try:
            return json.loads(row[0])
        except json.JSONDecodeError as ex:
            logging.warning(f'Stored value of "{key}" is not valid JSON, using the default: {ex}')
            return None

    def load_transactions(self) -> List[models.Transaction]:
        """Load the transaction list. Defaults to an empty list."""
        data = self._read(Key.Transactions)
        if not isinstance(data, list):
            if data is not None:
                logging.warning(f'Stored transactions are not a list, got {type(data)}.')
            return []
        return [models.Transaction.from_dict(t) for t in data if isinstance(t, dict)]

    def load_savings(self) -> models.SavingsState:
        """Load the savings state. Defaults to no completed days."""
        data = self._read(Key.Savings)
        if data is not None and not isinstance(data, dict):
            logging.warning(f'Stored savings state is not an object, got {type(data)}.')
        return models.SavingsState.from_dict(data)

    def _load_categories(self, key: Key, default: List[str]) -> List[str]:
        data = self._read(key)
        if not isinstance(data, list):
            if data is not None:
                logging.warning(f'Stored "{key}" is not a list, got {type(data)}.')
            return list(default)
        return models.normalize_categories(data)

    def load_expense_categories(self) -> List[str]:
        """Load the expense categories. Defaults to the built-in list."""
        return self._load_categories(Key.ExpenseCategories, models.DEFAULT_EXPENSE_CATEGORIES)

    def load_income_categories(self) -> List[str]:
        """Load the income categories. Defaults to the built-in list."""
        return self._load_categories(Key.IncomeCategories, models.DEFAULT_INCOME_CATEGORIES)

    def load(self) -> models.LedgerState:
        """Restore the working copy. Never raises."""
        state = models.LedgerState(
            transactions=self.load_transactions(),
            expense_categories=self.load_expense_categories(),
            income_categories=self.load_income_categories(),
            savings=self.load_savings(),
        )
        logging.debug(
            f'Loaded local state: {len(state.transactions)} transactions, '
            f'{len(state.savings.completed_days)} completed days.'
        )
        return state

    @staticmethod
    def slices(state: models.LedgerState) -> Dict[Key, Any]:
        """Return the JSON-ready value of each slice."""
        payload = state.to_payload()
        return {
            Key.Transactions: payload['transactions'],
            Key.Savings: payload['savings'],
            Key.ExpenseCategories: payload['expenseCategories'],
            Key.IncomeCategories: payload['incomeCategories'],
        }

    def persist_slice(self, key: Key, value: Any) -> None:
        """Write a single slice.

        A damaged database file is removed and the write retried once. A locked or
        busy database is left untouched.

        Raises:
            status.CacheInvalidException: If the value cannot be written.
        """
        data = json.dumps(value, ensure_ascii=False)
        for attempt in (1, 2):
            conn: Optional[sqlite3.Connection] = None
            try:
                conn = self.connection()
                conn.execute(
                    f'INSERT OR REPLACE INTO {TABLE_NAME} (key, value) VALUES (?, ?)',
                    (key.value, data)
                )
                conn.commit()
                return
            except sqlite3.OperationalError as ex:
                raise status.CacheInvalidException(f'Could not write "{key}": {ex}') from ex
            except sqlite3.DatabaseError as ex:
                if attempt == 2:
                    raise status.CacheInvalidException(f'Could not write "{key}": {ex}') from ex
                logging.error(f'Local store is damaged, recreating it: {ex}')
                if conn:
                    conn.close()
                    conn = None
                self.reset()
            finally:
                if conn:
                    conn.close()

    def persist(self, state: models.LedgerState) -> None:
        """Write all four slices, each independently."""
        for key, value in self.slices(state).items():
            self.persist_slice(key, value)
        logging.debug(f'Persisted local state to {self.db_path}')

    def reset(self) -> None:
        """Delete the database file, retrying on failure.

        Raises:
            status.CacheInvalidException: If unable to remove the database file after retries.
        """
        db_file = self.db_path
        if not db_file.exists():
            logging.debug('No local store found to delete.')
            return

        max_attempts = 5
        wait_seconds = 0.2

        for attempt in range(1, max_attempts + 1):
            try:
                db_file.unlink()
                logging.info(f'Local store removed: {db_file}')
                return
            except OSError as ex:
                logging.error(f'Error removing local store (attempt {attempt}/{max_attempts}): {ex}')
                if attempt == max_attempts:
                    raise status.CacheInvalidException(
                        f'Failed to remove {db_file} after {max_attempts} attempts: {ex}'
                    ) from ex
                time.sleep(wait_seconds)
                wait_seconds *= 1.5
