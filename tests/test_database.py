"""
Tests for LedgerSync.core.database: per-slice loaders, persistence and recovery.

Run:
    python -m unittest tests.test_database
"""
import json
import sqlite3
import unittest

from LedgerSync.core import database
from LedgerSync.core import models
from LedgerSync.settings import lib
from LedgerSync.status import status
from tests.base import BaseTestCase, mute_signals


class LocalStoreTests(BaseTestCase):

    def _write_raw(self, key: str, value: str) -> None:
        conn = self.store.connection()
        try:
            conn.execute('INSERT OR REPLACE INTO store (key, value) VALUES (?, ?)', (key, value))
            conn.commit()
        finally:
            conn.close()

    def test_db_path_follows_settings(self):
        self.assertEqual(self.store.db_path, lib.settings.db_path)

    def test_empty_store_loads_defaults(self):
        self.assertFalse(self.store.db_path.exists())
        state = self.store.load()
        self.assertEqual(state.transactions, [])
        self.assertEqual(state.savings.completed_days, [])
        self.assertEqual(state.expense_categories, models.DEFAULT_EXPENSE_CATEGORIES)
        self.assertEqual(state.income_categories, models.DEFAULT_INCOME_CATEGORIES)
        self.assertFalse(self.store.db_path.exists(), 'Loading must not create the database')

    def test_persist_and_load(self):
        state = models.LedgerState(
            transactions=[models.new_transaction('expense', '2024-01-01', '食物', 100)],
            expense_categories=['食物', '7-11'],
            income_categories=['薪水'],
            savings=models.SavingsState([1, 2, 5]),
        )
        self.store.persist(state)

        restored = database.LocalStore().load()
        self.assertEqual(restored, state)

    def test_values_are_json_under_fixed_keys(self):
        self.store.persist(models.LedgerState(expense_categories=['食物'], savings=models.SavingsState([3])))
        conn = sqlite3.connect(str(self.store.db_path))
        try:
            rows = dict(conn.execute('SELECT key, value FROM store').fetchall())
        finally:
            conn.close()
        self.assertEqual(
            set(rows),
            {'mw_transactions', 'mw_savings', 'mw_expense_cats', 'mw_income_cats'}
        )
        self.assertEqual(json.loads(rows['mw_savings']), {'completedDays': [3]})
        self.assertEqual(json.loads(rows['mw_expense_cats']), ['食物'])

    def test_slices_load_independently(self):
        self._write_raw(database.Key.Transactions.value, '{not json')
        self._write_raw(database.Key.Savings.value, json.dumps({'completedDays': [4, 2]}))
        self._write_raw(database.Key.ExpenseCategories.value, json.dumps({'wrong': 'shape'}))

        with self.assertLogs(level='WARNING'):
            state = self.store.load()
        self.assertEqual(state.transactions, [])
        self.assertEqual(state.savings.completed_days, [2, 4])
        self.assertEqual(state.expense_categories, models.DEFAULT_EXPENSE_CATEGORIES)
        self.assertEqual(state.income_categories, models.DEFAULT_INCOME_CATEGORIES)

    def test_empty_category_list_is_kept(self):
        self._write_raw(database.Key.IncomeCategories.value, '[]')
        self.assertEqual(self.store.load_income_categories(), [])

    def test_damaged_file_loads_defaults_and_recovers_on_write(self):
        self.store.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.store.db_path.write_bytes(b'this is not a database file' * 10)

        state = self.store.load()
        self.assertEqual(state.transactions, [])

        self.store.persist_slice(database.Key.Savings, {'completedDays': [7]})
        self.assertEqual(self.store.load_savings().completed_days, [7])

    def test_locked_database_is_not_recreated(self):
        transaction = models.new_transaction('expense', '2024-01-01', '食物', 100)
        self.store.persist(models.LedgerState(transactions=[transaction]))

        store = database.LocalStore(timeout=0.1)
        other = sqlite3.connect(str(store.db_path), isolation_level=None)
        try:
            other.execute('BEGIN EXCLUSIVE')
            with mute_signals():
                with self.assertRaises(status.CacheInvalidException):
                    store.persist_slice(database.Key.Savings, {'completedDays': [7]})
            other.execute('ROLLBACK')
        finally:
            other.close()

        self.assertTrue(store.db_path.exists())
        self.assertEqual(store.load_transactions(), [transaction])
        self.assertEqual(store.load_savings().completed_days, [])

    def test_reset(self):
        self.store.persist(models.LedgerState(savings=models.SavingsState([1])))
        self.assertTrue(self.store.db_path.exists())
        self.store.reset()
        self.assertFalse(self.store.db_path.exists())
        self.assertEqual(self.store.load().savings.completed_days, [])
        self.store.reset()


if __name__ == '__main__':
    unittest.main()
